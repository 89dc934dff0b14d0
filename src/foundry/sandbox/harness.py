"""
Sandbox harness executed inside the child interpreter.

This file is copied next to the candidate and run with ``python -I``, so it
must only depend on the standard library. It loads the candidate module by
path, hands its ``register`` entry point a mock registration handle, and
reports the outcome through a stdout marker or a stderr error line.
"""

import asyncio
import importlib.util
import inspect
import socket
import sys

OK_MARKER = "SANDBOX_OK"
ERROR_PREFIX = "SANDBOX_ERROR:"


class _NullLogger:
    """Logger that discards everything."""

    def debug(self, *args, **kwargs):
        pass

    info = warning = error = exception = debug


class MockApi:
    """
    Registration handle given to a candidate's ``register`` entry point.

    Records what the candidate registers and checks that every tool and
    hook carries a callable handler. Performs no other side effects.
    """

    def __init__(self):
        self.logger = _NullLogger()
        self.config = {}
        self.tools = []
        self.hooks = []

    def register_tool(self, tool=None, **kwargs):
        if tool is None:
            tools = [kwargs]
        elif callable(tool) and not isinstance(tool, dict):
            produced = tool({})
            tools = list(produced) if isinstance(produced, (list, tuple)) else [produced]
        elif isinstance(tool, (list, tuple)):
            tools = list(tool)
        else:
            tools = [{**tool, **kwargs}]

        for spec in tools:
            if not isinstance(spec, dict):
                raise TypeError(f"Tool definition must be a mapping, got {type(spec).__name__}")
            name = spec.get("name") or "<unnamed>"
            if not callable(spec.get("handler")):
                raise ValueError(f"Tool '{name}' missing handler")
            self.tools.append(name)

    def on(self, event, handler):
        if not callable(handler):
            raise ValueError(f"Hook '{event}' missing handler")
        self.hooks.append(event)


def _deny_network():
    def _blocked(*args, **kwargs):
        raise OSError("network access is disabled in the sandbox")

    socket.socket.connect = _blocked
    socket.socket.connect_ex = _blocked
    socket.create_connection = _blocked
    socket.getaddrinfo = _blocked


async def _await(awaitable):
    return await awaitable


def main(argv):
    if len(argv) != 2:
        sys.stderr.write(f"{ERROR_PREFIX} usage: runner.py CANDIDATE\n")
        return 2

    _deny_network()
    api = MockApi()
    try:
        spec = importlib.util.spec_from_file_location("candidate", argv[1])
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load candidate from {argv[1]}")
        module = importlib.util.module_from_spec(spec)
        sys.modules["candidate"] = module
        spec.loader.exec_module(module)

        register = getattr(module, "register", None)
        if not callable(register):
            raise AttributeError("Extension missing register() function")
        result = register(api)
        if inspect.isawaitable(result):
            asyncio.run(_await(result))
    except Exception as e:
        message = str(e) or type(e).__name__
        sys.stderr.write(f"{ERROR_PREFIX} {message}\n")
        sys.stderr.flush()
        return 1

    print(OK_MARKER, flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
