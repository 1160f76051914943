import asyncio
import functools
from typing import Any, Callable


async def run_blocking(func: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a blocking call (SQLAlchemy, file I/O) in the default executor"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
