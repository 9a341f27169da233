"""Global constants for the bracketeer tournament engine."""

# Firestore collections
TOURNAMENTS_COLLECTION = "tournaments"
MATCHES_COLLECTION = "matches"
REGISTRATIONS_COLLECTION = "registrations"

# Bracket types
BRACKET_SINGLE_ELIMINATION = "single_elimination"
BRACKET_DOUBLE_ELIMINATION = "double_elimination"
BRACKET_GROUP_PLAYOFF = "group_playoff"
ALLOWED_BRACKET_TYPES = frozenset(
    {BRACKET_SINGLE_ELIMINATION, BRACKET_DOUBLE_ELIMINATION, BRACKET_GROUP_PLAYOFF}
)

ALLOWED_TEAM_FORMATS = frozenset({"1x1", "2x2", "3x3", "5x5"})
ALLOWED_MAX_TEAMS = frozenset({4, 8, 16, 32, 64})
ALLOWED_BEST_OF = (1, 3, 5)

# Stages and the match id prefix each one uses
STAGE_SINGLE = "single"
STAGE_UPPER = "upper"
STAGE_LOWER = "lower"
STAGE_GRAND_FINAL = "grand_final"
STAGE_PLAYOFF = "playoff"
STAGE_GROUP = "group"

STAGE_PREFIXES = {
    STAGE_SINGLE: "r",
    STAGE_UPPER: "u",
    STAGE_LOWER: "l",
    STAGE_GRAND_FINAL: "gf",
    STAGE_PLAYOFF: "p",
    STAGE_GROUP: "g",
}
PREFIX_STAGES = {prefix: stage for stage, prefix in STAGE_PREFIXES.items()}
TREE_STAGES = frozenset({STAGE_SINGLE, STAGE_UPPER, STAGE_PLAYOFF})
GRAND_FINAL_MATCH_ID = "gf1_m1"

# Match statuses
MATCH_WAITING = "waiting"
MATCH_PENDING = "pending"
MATCH_COMPLETED = "completed"

# Ready-check statuses
READY_WAITING = "waiting"
READY_IN_PROGRESS = "in_progress"
READY_READY = "ready"
READY_COUNTDOWN = "ready_countdown"
READY_EXPIRED = "expired"

# Veto
VETO_BAN = "ban"
VETO_PICK = "pick"
VETO_DECIDER = "decider"
VETO_PENDING = "pending"
VETO_DONE = "done"
VETO_SCRIPTS = {
    1: (),
    3: ("ban", "ban", "ban", "ban", "pick", "pick", "ban", "ban", "ban", "decider"),
    5: ("ban", "ban", "pick", "pick", "ban", "ban", "pick", "pick", "ban", "decider"),
}
SYSTEM_DECIDER_UID = "system:decider"
SYSTEM_AUTO_DECIDER_UID = "system:auto_decider"
SYSTEM_AUTO_UID = "system:auto"

# Forfeit types
FORFEIT_READY_TIMEOUT = "ready_timeout"
FORFEIT_READY_TIMEOUT_BOTH = "ready_timeout_both"
FORFEIT_OPPONENT_ABSENT = "opponent_absent"
FORFEIT_DOUBLE_BOTH_SOURCES = "double_forfeit_both_sources"

# Tournament statuses
TOURNAMENT_UPCOMING = "upcoming"
TOURNAMENT_ONGOING = "ongoing"
TOURNAMENT_PAST = "past"

# Timing (epoch milliseconds)
READY_CONFIRM_WINDOW_MS = 5 * 60 * 1000
VETO_READY_DELAY_MS = 30 * 1000
VETO_TURN_MS = 30 * 1000

DEFAULT_MAP_POOL = (
    "Yggdrasil",
    "Naos",
    "Dongtian",
    "Blackmarket",
    "Akhet",
    "Outpost",
    "Tundra",
    "Itzamna",
    "Caesarea",
    "Tulix",
)
MIN_MAP_POOL_SIZE = 2

# Seeding
DEFAULT_MEMBER_ELO = 500
DEFAULT_TEAM_NAME = "Team"
GROUP_TARGET_SIZE = 4
PLAYOFF_QUALIFIERS_PER_GROUP = 2
MIN_BRACKET_PARTICIPANTS = 2
