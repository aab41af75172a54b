"""Global constants for the idpatourney application."""

# Collection names
TOURNAMENTS = "tournaments"
STAGES = "stages"
SQUADS = "squads"
REGISTRATIONS = "registrations"
SCORES = "scores"
MATCH_RESULTS = "match_results"
OFFLINE_QUEUE = "offline_queue"
USERS = "users"

# IDPA divisions and classifications
DIVISIONS = ("SSP", "ESP", "CDP", "CCP", "REV", "BUG", "PCC", "CO")
CLASSIFICATIONS = ("MA", "EX", "SS", "MM", "NV", "UN")

# Tournament status
TOURNAMENT_DRAFT = "draft"
TOURNAMENT_PUBLISHED = "published"
TOURNAMENT_ACTIVE = "active"
TOURNAMENT_COMPLETED = "completed"
TOURNAMENT_TRANSITIONS = {
    TOURNAMENT_DRAFT: (TOURNAMENT_PUBLISHED,),
    TOURNAMENT_PUBLISHED: (TOURNAMENT_ACTIVE,),
    TOURNAMENT_ACTIVE: (TOURNAMENT_COMPLETED,),
    TOURNAMENT_COMPLETED: (),
}

# Squad status
SQUAD_OPEN = "open"
SQUAD_FULL = "full"
SQUAD_CLOSED = "closed"

# Registration status
REG_REGISTERED = "registered"
REG_WAITLIST = "waitlist"
REG_CHECKED_IN = "checked_in"
REG_COMPLETED = "completed"
REG_CANCELLED = "cancelled"
# Statuses that occupy a squad slot
SLOT_HOLDING_STATUSES = (REG_REGISTERED, REG_CHECKED_IN, REG_COMPLETED)

PAYMENT_PENDING = "pending"

# Penalty seconds per occurrence
PENALTY_SECONDS = {
    "procedural": 3,
    "nonThreat": 5,
    "failureToNeutralize": 5,
    "flagrant": 10,
    "ftdr": 20,
}
STANDARD_PENALTIES = tuple(PENALTY_SECONDS)

# Points down per hit zone
POINTS_DOWN = {"down0": 0, "down1": 1, "down3": 3, "miss": 5, "nonThreat": 5}
HIT_ZONES = tuple(POINTS_DOWN)

# Offline queue
QUEUE_PENDING = "pending"
QUEUE_PROCESSING = "processing"
QUEUE_COMPLETED = "completed"
QUEUE_FAILED = "failed"
QUEUE_STATUSES = (QUEUE_PENDING, QUEUE_PROCESSING, QUEUE_COMPLETED, QUEUE_FAILED)

ACTION_SUBMIT_SCORE = "submitScore"
ACTION_UPDATE_SCORE = "updateScore"
ACTION_UPDATE_PROFILE = "updateProfile"
ACTION_CREATE_REGISTRATION = "createRegistration"
QUEUE_ACTIONS = (
    ACTION_SUBMIT_SCORE,
    ACTION_UPDATE_SCORE,
    ACTION_UPDATE_PROFILE,
    ACTION_CREATE_REGISTRATION,
)

OFFLINE_MAX_RETRIES = 3
OFFLINE_RETENTION_HOURS = 24
SYNC_BACKOFF_SECONDS = 0.5
SYNC_MAX_ATTEMPTS = 3

# Firestore "in" queries accept at most 30 values
FIRESTORE_IN_LIMIT = 30

# Writes per batch commit (Firestore allows 500)
FIRESTORE_BATCH_LIMIT = 400

# A queue item stuck in processing longer than this may be claimed again
PROCESSING_LEASE_SECONDS = 300
