"""focuscore — timed focus sessions and an idempotent reward ledger.

Public API re-exports for convenient imports:
    from focuscore import create_phase, complete_phase, grant, get_balance, ...
"""

# Workspace & paths
from focuscore.workspace import (
    workspace_root,
    get_timezone,
    now_local,
    day_str,
    today_str,
    settings_path,
    sessions_path,
    ledger_path,
    aggregates_path,
    items_path,
    hooks_config_path,
)

# Configuration
from focuscore.config import Settings, load_settings

# Errors
from focuscore.errors import (
    EngineError,
    InvalidRequest,
    InvalidTransition,
    NoMoreSteps,
    ConflictingActiveSession,
    SessionNotFound,
    StepIndexOutOfRange,
    StoreConflict,
    TransientFailure,
    InsufficientBalance,
    ContentGenerationFailed,
    ItemNotFound,
)

# Timer
from focuscore.timer import (
    elapsed_seconds,
    remaining_seconds,
    format_clock,
    snapshot,
)

# Session store
from focuscore.store import (
    get_session,
    get_owned_session,
    list_sessions,
    list_group,
    get_active_session,
)

# Focus cycles
from focuscore.focus import (
    create_phase,
    start_phase,
    pause_phase,
    resume_phase,
    complete_phase,
    cancel_phase,
    get_active_phase,
)

# Decomposed tasks
from focuscore.decomposed import (
    create_task,
    start_task,
    pause_task,
    resume_task,
    advance_task,
    complete_task,
    cancel_task,
    get_active_task,
    resolve_steps,
    default_steps,
    parse_generated_steps,
)

# Reward ledger
from focuscore.ledger import (
    grant,
    spend,
    claim_daily_login,
    get_balance,
    list_ledger,
    entries_between,
    can_earn_today,
    monthly_stats,
    rebuild_balances,
    verify_ledger,
)

# Dispatcher & tracked items
from focuscore.dispatcher import (
    add_listener,
    remove_listener,
    on_item_completed,
    owner_aggregates,
)
from focuscore.items import (
    add_task,
    add_reminder,
    load_items,
    complete_item,
    due_reminders,
)
from focuscore.poller import ReminderPoller

# Statistics
from focuscore.stats import focus_stats, decomposed_stats

# Models
from focuscore.models import (
    Kind,
    Status,
    Phase,
    EntryType,
    Reason,
    ItemType,
    Step,
    Performance,
    FocusDetail,
    DecomposedDetail,
    Session,
    LedgerEntry,
    GrantResult,
    SpendResult,
    CompletionResult,
    AdvanceResult,
    TimerSnapshot,
    TrackedItem,
)
