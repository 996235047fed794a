"""
API Services Layer.

Tenant-scoped database operations behind the API routes and the background
workers. Each public function opens its own session and commits its own
unit of work; ``*_in_session`` helpers run inside a caller's transaction.
"""

from api.services.agencies import (
    create_agency,
    get_agency,
    list_agencies,
    add_specialization,
    add_coverage,
    get_performance_snapshots,
)

from api.services.jobs import (
    create_job,
    get_job,
    list_jobs,
)

from api.services.ownership import (
    check_duplicate,
    claim,
    release,
    expire_ownerships,
)

from api.services.matching import (
    match_agencies_to_job,
)

from api.services.distributions import (
    create_distribution,
    distribute_job,
    submit_candidate,
    record_placement,
    close_job,
    get_distribution_stats,
)

from api.services.fees import (
    create_rate_card,
    resolve_card,
    quote_fee,
    calculate_fee,
)

from api.services.budgets import (
    create_budget,
    post_budget_transaction,
    transfer,
    create_allocation,
    get_budget_utilization,
    get_budget_tree,
    get_budget_summary,
    get_consolidated_budgets,
    get_budget_for_job,
    reconcile_budget,
)

from api.services.forecasting import (
    forecast_budget,
)

from api.services.sla import (
    check_breach,
    create_default_sla_config,
    evaluate_agency_sla,
    get_sla_status,
)

from api.services.performance import (
    recompute_snapshot,
    recompute_tenant_snapshots,
)

__all__ = [
    # Agencies
    "create_agency",
    "get_agency",
    "list_agencies",
    "add_specialization",
    "add_coverage",
    "get_performance_snapshots",
    # Jobs
    "create_job",
    "get_job",
    "list_jobs",
    # Ownership
    "check_duplicate",
    "claim",
    "release",
    "expire_ownerships",
    # Matching
    "match_agencies_to_job",
    # Distributions
    "create_distribution",
    "distribute_job",
    "submit_candidate",
    "record_placement",
    "close_job",
    "get_distribution_stats",
    # Fees
    "create_rate_card",
    "resolve_card",
    "quote_fee",
    "calculate_fee",
    # Budgets
    "create_budget",
    "post_budget_transaction",
    "transfer",
    "create_allocation",
    "get_budget_utilization",
    "get_budget_tree",
    "get_budget_summary",
    "get_consolidated_budgets",
    "get_budget_for_job",
    "reconcile_budget",
    # Forecasting
    "forecast_budget",
    # SLA
    "check_breach",
    "create_default_sla_config",
    "evaluate_agency_sla",
    "get_sla_status",
    # Performance
    "recompute_snapshot",
    "recompute_tenant_snapshots",
]
