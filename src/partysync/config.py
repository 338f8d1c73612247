"""Shared constants for partysync. All session-wide configuration lives here."""

# --- Display (demo window) ---
SCREEN_WIDTH = 1280
SCREEN_HEIGHT = 720
FPS = 60
WORLD_RENDER_SCALE = 16  # pixels per world unit

# --- Host broadcast ---
BROADCAST_INTERVAL_MS = 33    # ~30 Hz, independent of render rate
FULL_SYNC_INTERVAL = 90       # every Nth broadcast carries the full entity set

# --- Joiner uplink ---
INPUT_SEND_INTERVAL_MS = 33   # playerInput throttle (~30 Hz)
SLOW_GAP_MS = 4000            # no gameState for this long -> "connection slow"

# --- Reconciliation of the joiner's own player ---
RECONCILE_SNAP_DISTANCE = 3.0  # world units; larger errors snap immediately
RECONCILE_BLEND = 0.2          # fraction of the error corrected per snapshot

# --- Level of detail for entity deltas ---
LOD_NEAR_DISTANCE = 40.0      # full precision inside this radius
LOD_CULL_DISTANCE = 120.0     # omitted from delta ticks beyond this radius
LOD_FAR_PRECISION = 1         # decimals kept for far positions

# --- Handshake and reconnection ---
JOIN_TIMEOUT_MS = 10000
PROBE_TIMEOUT_MS = 5000
RECONNECT_BASE_DELAY_MS = 1000
RECONNECT_MAX_DELAY_MS = 8000
RECONNECT_MAX_ATTEMPTS = 8

# --- Networking ---
DEFAULT_PORT = 23456
MAX_RECV_SIZE = 65536

# --- Players ---
PLAYER_COLORS = (
    "#FF5733",  # red-orange (host)
    "#33FF57",  # green
    "#3357FF",  # blue
    "#FF33F5",  # pink
    "#F5FF33",  # yellow
    "#33FFF5",  # cyan
    "#FF8333",  # orange
    "#8333FF",  # purple
)
DEFAULT_MODEL_ID = "monk"
DEFAULT_ANIMATION = "idle"

# --- Persistence ---
DATA_DIR_NAME = ".partysync"
IDENTITY_FILE = "identity.json"
PEERS_FILE = "peers.json"

# --- Demo world ---
PLAYER_SPEED = 6.0            # world units per second
PLAYER_MAX_HP = 100
JUMP_VELOCITY = 6.0
GRAVITY = 20.0
ENEMY_COUNT = 12
ENEMY_EXPERIENCE = 25
ARENA_RADIUS = 30.0
ENEMY_SPEED = 1.5
ENEMY_HP = 30
ENEMY_DAMAGE = 5
ENEMY_ATTACK_RANGE = 1.5
ENEMY_ATTACK_COOLDOWN_MS = 1000
ENEMY_RESPAWN_MS = 3000
KILL_RANGE = 2.5             # demo "attack" reach

# --- Colors (demo rendering) ---
COLOR_BG = (24, 22, 30)
COLOR_ENEMY = (170, 60, 60)
COLOR_TEXT = (210, 210, 210)
