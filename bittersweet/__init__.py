"""Bittersweet state engine — normalized store, session timer, event bus, persistence.

Public API re-exports for convenient imports:
    from bittersweet import create_store, StoreConfig, StoreEvents, ...
"""

# Store
from bittersweet.store import (
    AppStore,
    create_store,
)

# Configuration
from bittersweet.config import (
    StoreConfig,
    configure_logging,
    load_config,
    storage_dir,
    workspace_root,
)

# Errors
from bittersweet.errors import (
    EventRecursionError,
    IntegrityError,
    InvalidStateError,
    MigrationError,
    NotFoundError,
    SessionConflictError,
    StoreError,
    ValidationError,
)

# Events
from bittersweet.events import (
    EventBus,
    StoreEvent,
    StoreEvents,
    create_store_event,
)

# Normalized collections
from bittersweet.normalized import (
    EntityManager,
    NormalizedState,
    create_normalized_state,
    update_normalized_state,
)

# Sessions
from bittersweet.session import (
    SessionController,
    calculate_seeds,
)

# Time and storage ports
from bittersweet.clock import (
    AsyncioScheduler,
    SystemClock,
)
from bittersweet.storage import (
    BatchedStorage,
    FileStorage,
    MemoryStorage,
)

# Persistence
from bittersweet.migrations import CURRENT_VERSION, run_migrations
from bittersweet.persistence import partialize, validate_payload

# App blocking
from bittersweet.blocking import AppBlockingPort, BlockingBridge

# Models
from bittersweet.models import (
    Category,
    Challenge,
    FocusSession,
    FocusSettings,
    FocusStats,
    RewardTransaction,
    Squad,
    Tag,
    Task,
    TaskProgress,
    UnlockableApp,
)
