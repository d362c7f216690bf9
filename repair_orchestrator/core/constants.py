"""
Constants
Centralised storage for outcome statuses, group tags, decisions, stop reasons
and orchestrator states.
"""
# Test outcome statuses
STATUS_PASS = "pass"
STATUS_FAIL = "fail"
STATUS_SKIPPED = "skipped"
OUTCOME_STATUSES = (STATUS_PASS, STATUS_FAIL, STATUS_SKIPPED)

# Failure group tags
INDEPENDENT = "independent"
COUPLED = "coupled"

# Coupling signals
SIGNAL_SHARED_RESOURCE = "shared_resource"
SIGNAL_ERROR_SIGNATURE = "error_signature"
SIGNAL_FEATURE_AREA = "feature_area"

# Session lifecycle
SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"
SESSION_STOPPED = "stopped"

# Modes
MODE_INTERACTIVE = "interactive"
MODE_UNATTENDED = "unattended"
MODES = (MODE_INTERACTIVE, MODE_UNATTENDED)

# Decisions
DECISION_CONTINUE = "continue"
DECISION_DONE = "done"
DECISION_STOPPED = "stopped"

# Stop reasons
STOP_RETRY_LIMIT = "retry_limit"
STOP_NO_PROGRESS = "no_progress"
STOP_USER = "user_stop"
STOP_REPORT_UNAVAILABLE = "report_unavailable"

# Interactive directives
DIRECTIVE_CONTINUE = "continue"
DIRECTIVE_SWITCH_TO_UNATTENDED = "switch-to-unattended"
DIRECTIVE_STOP = "stop"
DIRECTIVES = (DIRECTIVE_CONTINUE, DIRECTIVE_SWITCH_TO_UNATTENDED, DIRECTIVE_STOP)

# Orchestrator states
STATE_INIT = "INIT"
STATE_RESUME = "RESUME"
STATE_DISCOVER = "DISCOVER"
STATE_CLASSIFY = "CLASSIFY"
STATE_DISPATCH = "DISPATCH"
STATE_VERIFY = "VERIFY"
STATE_DECIDE = "DECIDE"
STATE_PAUSED = "PAUSED"
STATE_DONE = "DONE"
STATE_STOPPED = "STOPPED"
TERMINAL_STATES = frozenset({STATE_DONE, STATE_STOPPED})
