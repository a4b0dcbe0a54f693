"""
Common Components for FlowTutor

This package contains infrastructure shared by the adaptation engine and the
gamification ledger.

Key components:
1. Logging - Centralized logging configuration
2. Error Handling - Error taxonomy and retry utilities
3. Configuration - Settings from environment, .env and config files
4. Storage - Keyed record stores with optimistic transactions
"""

# Initialize logging
from flowtutor.common.logger import app_logger

from flowtutor.common.error_handling import (
    FlowTutorError, ValidationError, NotFoundError, ConflictError,
    TransientError, StorageUnavailableError, ConfigurationError,
    ErrorCode, ErrorSeverity
)
from flowtutor.common.config import AppConfig, LedgerConfig, get_config, reload_config
from flowtutor.common.clock import Clock, SystemClock, FixedClock, calendar_date
