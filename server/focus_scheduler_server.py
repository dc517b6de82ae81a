"""
Focus Scheduler MCP Server

MCP server that proposes focus blocks around a user's meetings and
confirmed time blocks, and manages the tasks and preferences those
proposals are built from. Also exposes a small HTTP API and the Google
OAuth routes used when meetings come from Google Calendar.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import json
from pathlib import Path
import re
import sys
from typing import Optional

from fastmcp import FastMCP, Context
from fastmcp.utilities.logging import get_logger
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse

# Add the server directory to Python path
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import ServerSettings, get_settings
from services.calendar_store_service import CalendarStoreService
from services.errors import DataUnavailable, FocusEngineError, InvalidRange
from services.event_collector import EventCollector
from services.focus_models import Priority
from services.focus_scheduler_service import FocusSchedulerService
from services.google_calendar_service import GoogleCalendarService
from services.oauth_service import OAuthService
from services.security_service import SecurityService
from services.user_config_service import UserPreferencesService

logger = get_logger(__name__)

# === SECURITY HELPERS ===

def sanitize_user_id(user_id: str) -> str:
    """
    Sanitize user ID to prevent path traversal and injection attacks.

    Args:
        user_id: Raw user ID from request

    Returns:
        Sanitized user ID safe for use in file paths

    Raises:
        ValueError: If user_id contains dangerous characters
    """
    if not user_id:
        raise ValueError("User ID cannot be empty")

    user_id = user_id.replace('..', '').replace('/', '').replace('\\', '')

    if not re.match(r'^[a-zA-Z0-9._-]+$', user_id):
        raise ValueError(f"Invalid user ID format: {user_id}")

    if len(user_id) > 100:
        raise ValueError("User ID too long")

    return user_id


def get_user_id(ctx: Context) -> str:
    """
    Extract user ID from request context headers or metadata.

    Falls back to 'default' for local use. Does NOT sanitize; use
    require_user() for anything that touches user data.
    """
    try:
        if ctx and hasattr(ctx, 'request_context') and ctx.request_context:
            headers = getattr(ctx.request_context, 'headers', {})
            if headers:
                user_id = headers.get('x-user-id') or headers.get('user-id') or headers.get('X-User-ID')
                if user_id:
                    return user_id

            metadata = getattr(ctx.request_context, 'metadata', {})
            if metadata and 'user_id' in metadata:
                return metadata['user_id']
    except Exception as e:
        logger.warning(f"Error extracting user_id from context: {e}")

    logger.debug("Using default user_id")
    return 'default'


def require_user(user_id: str, app: "AppContext") -> str:
    """
    Sanitize a user ID and, when meetings come from Google Calendar,
    require that the user has completed OAuth.

    Raises:
        RuntimeError: If Google authentication is required but missing
        ValueError: If user_id is invalid
    """
    user_id = sanitize_user_id(user_id)
    if app.settings.meeting_source == "google" and not app.oauth_service.is_user_authenticated(user_id):
        raise RuntimeError(
            f"User {user_id} is not authenticated. Please complete OAuth flow first."
        )
    return user_id


def describe_error(error: Exception) -> str:
    if isinstance(error, DataUnavailable):
        return f"Error: {error}. This is temporary, please retry."
    return f"Error: {error}"

# === APPLICATION CONTEXT ===

@dataclass
class AppContext:
    """Application context with all services."""
    focus_scheduler_service: FocusSchedulerService
    calendar_store: CalendarStoreService
    preferences_service: UserPreferencesService
    oauth_service: OAuthService
    security_service: SecurityService
    settings: ServerSettings


def build_app_context(settings: Optional[ServerSettings] = None) -> AppContext:
    """Wire up every service from settings."""
    settings = settings or get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    oauth_service = OAuthService(settings=settings)
    calendar_store = CalendarStoreService(data_dir=settings.data_dir, timezone_name=settings.timezone)
    preferences_service = UserPreferencesService(
        data_dir=settings.data_dir,
        default_focus_hours=settings.default_optimal_focus_hours,
    )

    google_calendar_service = None
    if settings.meeting_source == "google":
        google_calendar_service = GoogleCalendarService(
            oauth_service=oauth_service,
            timezone_name=settings.timezone,
        )

    event_collector = EventCollector(
        calendar_store=calendar_store,
        google_calendar_service=google_calendar_service,
        timezone_name=settings.timezone,
    )
    focus_scheduler_service = FocusSchedulerService(
        calendar_store=calendar_store,
        preferences_service=preferences_service,
        event_collector=event_collector,
        settings=settings,
    )

    return AppContext(
        focus_scheduler_service=focus_scheduler_service,
        calendar_store=calendar_store,
        preferences_service=preferences_service,
        oauth_service=oauth_service,
        security_service=SecurityService(data_dir=settings.data_dir),
        settings=settings,
    )


@asynccontextmanager
async def app_lifespan(mcp: FastMCP):
    """Initialize all services for the focus scheduler."""
    try:
        logger.info("Initializing Focus Scheduler MCP Server...")
        app_context = build_app_context()
        set_global_app_context(app_context)
        logger.info(
            f"Focus Scheduler MCP Server initialized (meeting source: {app_context.settings.meeting_source})"
        )
        yield app_context
    except Exception as e:
        logger.error(f"Error during app lifespan: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down Focus Scheduler MCP Server")

# === MCP SERVER ===

mcp = FastMCP(
    name="focus-scheduler-server",
    instructions="""You are a Focus Time Assistant that protects the user's deep work time.

Use suggest_focus_blocks(start_date, end_date) to propose focus blocks around the user's
meetings and confirmed time blocks. Each proposal is linked to the most urgent pending task.
Show the proposals to the user and call confirm_focus_block(suggestion_id) only for the
ones they accept. Use add_task() and complete_task() to keep the task list current, and
set_work_hours() / set_optimal_focus_time() when the user describes their schedule.

Dates are ISO-8601 (YYYY-MM-DD). An empty suggestion list means there is no free time
worth protecting in that range; it is not an error.""",
    lifespan=app_lifespan
)


def _app(ctx: Context) -> AppContext:
    return ctx.request_context.lifespan_context

# === FOCUS BLOCK TOOLS ===

@mcp.tool()
async def suggest_focus_blocks(
    start_date: str,
    end_date: str,
    ctx: Context = None
) -> str:
    """
    Propose focus blocks between two dates (inclusive).

    Proposals replace any earlier unconfirmed proposals.

    Args:
        start_date: First day, YYYY-MM-DD
        end_date: Last day, YYYY-MM-DD
    """
    logger.info(f"TOOL CALLED: suggest_focus_blocks(start_date={start_date}, end_date={end_date})")
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
    except (RuntimeError, ValueError) as e:
        logger.error(f"Authentication failed: {e}")
        return f"Error: {str(e)}"

    is_allowed, rate_limit_error = app.security_service.check_rate_limit(user_id, 'suggest')
    if not is_allowed:
        return f"Error: {rate_limit_error}"

    service = app.focus_scheduler_service
    try:
        range_start, range_end = service.parse_range(start_date, end_date)
        run = await service.suggest_focus_blocks(user_id, range_start, range_end)
        # Stored records carry the IDs needed for confirm_focus_block
        pending = app.calendar_store.get_pending_suggestions(user_id)
    except FocusEngineError as e:
        logger.error(f"Focus block suggestion failed for user {user_id}: {e}")
        return describe_error(e)

    app.security_service.log_audit_event('suggest_operation', user_id, {
        'start_date': start_date,
        'end_date': end_date,
        'suggestion_count': len(run.suggestions),
        'confidence': run.confidence,
    })

    if not run.suggestions:
        return f"No free time worth a focus block between {start_date} and {end_date}."
    return f"Suggested {len(pending)} focus blocks (confidence {run.confidence}): {json.dumps(pending, indent=2)}"


@mcp.tool()
async def get_free_time_slots(
    start_date: str,
    end_date: str,
    ctx: Context = None
) -> str:
    """
    Get free time inside working hours between two dates (inclusive).

    Args:
        start_date: First day, YYYY-MM-DD
        end_date: Last day, YYYY-MM-DD
    """
    logger.info(f"TOOL CALLED: get_free_time_slots(start_date={start_date}, end_date={end_date})")
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
    except (RuntimeError, ValueError) as e:
        logger.error(f"Authentication failed: {e}")
        return f"Error: {str(e)}"

    is_allowed, rate_limit_error = app.security_service.check_rate_limit(user_id, 'read')
    if not is_allowed:
        return f"Error: {rate_limit_error}"

    service = app.focus_scheduler_service
    try:
        range_start, range_end = service.parse_range(start_date, end_date)
        slots = await service.get_free_time_slots(user_id, range_start, range_end)
    except FocusEngineError as e:
        return describe_error(e)

    formatted = [
        {'start': slot.start.isoformat(), 'end': slot.end.isoformat(),
         'minutes': int(slot.duration.total_seconds() // 60)}
        for slot in slots
    ]
    return f"Free time slots from {start_date} to {end_date}: {json.dumps(formatted, indent=2)}"


@mcp.tool()
async def get_pending_suggestions(ctx: Context = None) -> str:
    """Get focus block proposals that have not been confirmed yet."""
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
        pending = app.calendar_store.get_pending_suggestions(user_id)
    except (RuntimeError, ValueError, DataUnavailable) as e:
        return describe_error(e)
    return f"Pending focus block suggestions: {json.dumps(pending, indent=2)}"


@mcp.tool()
async def confirm_focus_block(
    suggestion_id: str,
    ctx: Context = None
) -> str:
    """
    Confirm a proposed focus block so it becomes a protected time block.

    Args:
        suggestion_id: ID from suggest_focus_blocks or get_pending_suggestions
    """
    logger.info(f"TOOL CALLED: confirm_focus_block(suggestion_id={suggestion_id})")
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
    except (RuntimeError, ValueError) as e:
        return f"Error: {str(e)}"

    is_allowed, rate_limit_error = app.security_service.check_rate_limit(user_id, 'write')
    if not is_allowed:
        return f"Error: {rate_limit_error}"

    try:
        block = app.calendar_store.confirm_suggestion(user_id, suggestion_id)
    except (ValueError, DataUnavailable) as e:
        return describe_error(e)
    if block is None:
        return f"Error: No pending suggestion with ID {suggestion_id}."

    app.security_service.log_audit_event('write_operation', user_id, {
        'operation': 'confirm_focus_block',
        'suggestion_id': suggestion_id,
    })
    return f"Confirmed focus block '{block['title']}' from {block['start_time']} to {block['end_time']}."

# === TASK TOOLS ===

@mcp.tool()
async def add_task(
    title: str,
    priority: str = "medium",
    estimated_hours: float = None,
    deadline: str = None,
    ctx: Context = None
) -> str:
    """
    Add a task that focus blocks can be assigned to.

    Args:
        title: Name of the task
        priority: One of: high, medium, low
        estimated_hours: Optional estimated duration in hours
        deadline: Optional due date (YYYY-MM-DD)
    """
    logger.info(f"TOOL CALLED: add_task(title={title}, priority={priority})")

    if not title or len(title.strip()) == 0:
        return "Error: Task title cannot be empty."
    if len(title) > 500:
        return "Error: Task title too long (max 500 characters)."

    try:
        task_priority = Priority(priority.lower())
    except ValueError:
        return f"Error: Priority must be one of: {', '.join(p.value for p in Priority)}"

    if estimated_hours is not None and not (0 < estimated_hours <= 24):
        return "Error: Estimated hours must be a positive number up to 24."

    if deadline:
        try:
            datetime.strptime(deadline, "%Y-%m-%d")
        except ValueError:
            return "Error: Deadline must be in YYYY-MM-DD format."

    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
        task = app.calendar_store.add_task(user_id, title.strip(), task_priority, estimated_hours, deadline)
    except (RuntimeError, ValueError, DataUnavailable) as e:
        return describe_error(e)
    return f"Added: {task['title']} ({task['priority']}, id {task['id']})"


@mcp.tool()
async def complete_task(
    task_id: str,
    ctx: Context = None
) -> str:
    """
    Mark a task as completed so it is no longer assigned to focus blocks.

    Args:
        task_id: ID returned by add_task or list_pending_tasks
    """
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
        completed = app.calendar_store.complete_task(user_id, task_id)
    except (RuntimeError, ValueError, DataUnavailable) as e:
        return describe_error(e)
    if not completed:
        return f"Error: No task with ID {task_id}."
    return f"Completed task {task_id}"


@mcp.tool()
async def list_pending_tasks(ctx: Context = None) -> str:
    """Get tasks not yet completed, most urgent first."""
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
        tasks = app.calendar_store.fetch_pending_tasks(user_id)
    except (RuntimeError, ValueError, DataUnavailable) as e:
        return describe_error(e)
    return f"Pending tasks: {json.dumps([task.model_dump(mode='json') for task in tasks], indent=2)}"


@mcp.tool()
async def add_meeting(
    title: str,
    start_time: str,
    end_time: str,
    ctx: Context = None
) -> str:
    """
    Record a meeting in the local calendar.

    Args:
        title: Meeting title
        start_time: ISO-8601 start, e.g. 2025-01-06T09:00
        end_time: ISO-8601 end, e.g. 2025-01-06T10:00
    """
    app = _app(ctx)
    if app.settings.meeting_source == "google":
        return "Error: Meetings are read from Google Calendar. Add the meeting there instead."
    try:
        user_id = require_user(get_user_id(ctx), app)
        start, end = app.focus_scheduler_service.parse_range(start_time, end_time)
        meeting = app.calendar_store.add_meeting(user_id, title, start, end)
    except (RuntimeError, ValueError, FocusEngineError) as e:
        return describe_error(e)
    return f"Added meeting '{meeting['title']}' from {meeting['start_time']} to {meeting['end_time']}"

# === PREFERENCE TOOLS ===

@mcp.tool()
async def get_preferences(ctx: Context = None) -> str:
    """Get working hours and preferred focus block length."""
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
        preferences = app.preferences_service.get_preferences(user_id)
    except (RuntimeError, ValueError, DataUnavailable) as e:
        return describe_error(e)
    return f"Preferences: {preferences.model_dump_json(indent=2)}"


@mcp.tool()
async def set_work_hours(
    work_hours: dict,
    ctx: Context = None
) -> str:
    """
    Replace working hours.

    Args:
        work_hours: Weekday -> {"start": "HH:MM", "end": "HH:MM"}, or null for a day off.
            Example: {"monday": {"start": "08:00", "end": "16:00"}, "saturday": null}
    """
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
        preferences = app.preferences_service.update_work_hours(user_id, work_hours)
    except ValidationError as e:
        return f"Error: Invalid working hours. {e.errors()[0]['msg']}"
    except (RuntimeError, ValueError, DataUnavailable) as e:
        return describe_error(e)
    return f"Working hours updated: {preferences.work_hours.model_dump_json()}"


@mcp.tool()
async def set_optimal_focus_time(
    hours: float,
    ctx: Context = None
) -> str:
    """
    Set the preferred focus block length.

    Args:
        hours: Block length in hours, e.g. 1.5
    """
    app = _app(ctx)
    try:
        user_id = require_user(get_user_id(ctx), app)
        preferences = app.preferences_service.update_optimal_focus_time(user_id, hours)
    except ValidationError:
        return "Error: Focus time must be a positive number of hours."
    except (RuntimeError, ValueError, DataUnavailable) as e:
        return describe_error(e)
    return f"Optimal focus time set to {preferences.optimal_focus_time} hours"

# === HTTP ENDPOINTS ===

# Store app_context globally for custom routes
_global_app_context: Optional[AppContext] = None


def set_global_app_context(app_context: Optional[AppContext]):
    """Set the global app context for custom routes."""
    global _global_app_context
    _global_app_context = app_context


def get_app_context() -> AppContext:
    if _global_app_context is None:
        raise RuntimeError("Services not initialized")
    return _global_app_context


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request):
    """Health check endpoint for monitoring."""
    try:
        app = get_app_context()
        return JSONResponse({
            "status": "healthy",
            "service": "focus-scheduler-mcp-server",
            "version": "1.0.0",
            "meeting_source": app.settings.meeting_source,
            "mcp_endpoint": "/mcp",
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat()
            },
            status_code=503
        )


@mcp.custom_route("/api/calendar/suggest-focus", methods=["GET"])
async def suggest_focus_route(request: Request):
    """
    Focus block suggestions as JSON.

    Query: startDate, endDate (ISO-8601). User from the X-User-ID header.
    """
    app = get_app_context()
    start_date = request.query_params.get('startDate')
    end_date = request.query_params.get('endDate')

    try:
        user_id = require_user(request.headers.get('x-user-id', ''), app)
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Unauthorized focus block suggestion attempt: {e}")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    if not start_date or not end_date:
        return JSONResponse({"error": "Start date and end date are required"}, status_code=400)

    is_allowed, rate_limit_error = app.security_service.check_rate_limit(user_id, 'suggest')
    if not is_allowed:
        return JSONResponse({"error": rate_limit_error}, status_code=429)

    service = app.focus_scheduler_service
    try:
        range_start, range_end = service.parse_range(start_date, end_date)
        run = await service.suggest_focus_blocks(user_id, range_start, range_end)
    except InvalidRange as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except DataUnavailable as e:
        logger.error(f"Focus block suggestion failed for user {user_id}: {e}")
        return JSONResponse({"error": str(e), "retryable": True}, status_code=503)

    return JSONResponse(run.model_dump(mode='json', by_alias=True))


@mcp.custom_route("/oauth/authorize", methods=["GET"])
async def oauth_authorize(request: Request):
    """Start Google OAuth for ?user_id=..."""
    try:
        user_id = sanitize_user_id(request.query_params.get('user_id', ''))
        authorization_url = get_app_context().oauth_service.get_authorization_url(user_id)
    except (ValueError, FileNotFoundError) as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return RedirectResponse(authorization_url)


@mcp.custom_route("/oauth/callback", methods=["GET"])
async def oauth_callback(request: Request):
    """Complete Google OAuth and store the user's tokens."""
    code = request.query_params.get('code')
    state = request.query_params.get('state')
    if not code or not state:
        return JSONResponse({"error": "Missing code or state"}, status_code=400)

    user_id = get_app_context().oauth_service.handle_callback(code, state)
    if user_id is None:
        return JSONResponse({"error": "Authentication failed"}, status_code=400)
    return JSONResponse({"status": "success", "user_id": user_id})


@mcp.custom_route("/oauth/status", methods=["GET"])
async def oauth_status(request: Request):
    """Report whether ?user_id=... has valid Google credentials."""
    try:
        user_id = sanitize_user_id(request.query_params.get('user_id', ''))
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    authenticated = get_app_context().oauth_service.is_user_authenticated(user_id)
    return JSONResponse({"user_id": user_id, "authenticated": authenticated})

# === SERVER ENTRY POINT ===

if __name__ == "__main__":
    logger.info("=" * 60)
    logger.info("Starting Focus Scheduler MCP Server")
    logger.info("=" * 60)
    logger.info("MCP endpoint available at: http://0.0.0.0:8084/mcp")
    logger.info("Health check: GET /health")
    logger.info("Suggestions: GET /api/calendar/suggest-focus?startDate=...&endDate=...")
    logger.info("=" * 60)

    try:
        mcp.run(transport="streamable-http", host="0.0.0.0", port=8084)
    except Exception as e:
        logger.error(f"Fatal error starting MCP server: {e}", exc_info=True)
        raise
