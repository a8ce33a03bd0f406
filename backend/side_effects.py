# side_effects.py — Best-effort side effects (email, PDF rendering)
import inspect
import logging

logger = logging.getLogger("certisphere.side_effects")


async def run_best_effort(label: str, func, *args, **kwargs) -> bool:
    """Run a side effect after the owning state change has committed.

    Failures are logged and swallowed; the caller's outcome never depends on
    them. Returns True when the side effect completed.
    """
    try:
        outcome = func(*args, **kwargs)
        if inspect.isawaitable(outcome):
            await outcome
        return True
    except Exception as e:
        logger.error(f"Best-effort side effect '{label}' failed: {e}", exc_info=True)
        return False
