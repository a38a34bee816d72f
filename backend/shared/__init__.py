"""
Shared module for common utilities used by the REST API.

STRUCTURE:
- shared.security: Authentication and request integrity
  - auth.py: JWT signing/verification, current_user_context
  - password.py: Bcrypt hashing
  - request_signing.py: HMAC signatures for outbound fiscal requests
  - rate_limit.py: slowapi limiter

- shared.infrastructure: Database and Redis
  - db.py: SQLAlchemy sessions, safe_commit()
  - redis_pool.py: Shared sync Redis pool (job queues)
  - correlation.py: X-Request-ID middleware and log filter

- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging
  - constants.py: Roles, statuses, transitions, queues

- shared.utils: Utilities
  - exceptions.py: HTTP exceptions with auto-logging
  - money.py: Decimal rounding and cents conversion
  - clock.py: UTC and branch-local time helpers
  - schemas.py: Shared Pydantic schemas
  - health.py: Dependency health checks

IMPORT EXAMPLES:
    from shared.security.auth import verify_jwt, current_user_context
    from shared.infrastructure.db import get_db, safe_commit
    from shared.config.settings import settings
    from shared.config.constants import Roles, OrderStatus
    from shared.utils.exceptions import NotFoundError, ForbiddenError
"""
