"""Shared fixtures: a ctypes stand-in for the native WadeScript runtime.

JIT tests run lowered modules in-process. Runtime list, dict, call-stack
and exception functions are backed by Python objects; libc functions resolve to the real C
library so strings produced by generated code are ordinary C strings.
"""

import ctypes

import pytest

from wadescript.compiler.backend import JITSession
from wadescript.compiler.pipeline import compile_source


class FakeRuntime:
    """Handles are small integers indexing Python containers."""

    def __init__(self):
        self.objects = {}
        self.call_stack = []
        self._next_handle = 1
        self._callbacks = []
        self.reset_exceptions()

    def _new(self, value):
        handle = self._next_handle
        self._next_handle += 1
        self.objects[handle] = value
        return handle

    # -- list ----------------------------------------------------------
    def list_create_i64(self):
        return self._new([])

    def list_push_i64(self, handle, value):
        self.objects[handle].append(value)

    def list_get_i64(self, handle, index):
        items = self.objects[handle]
        return items[index] if 0 <= index < len(items) else 0

    def list_set_i64(self, handle, index, value):
        items = self.objects[handle]
        if 0 <= index < len(items):
            items[index] = value

    def list_pop_i64(self, handle):
        items = self.objects[handle]
        return items.pop() if items else 0

    def list_length(self, handle):
        return len(self.objects[handle])

    # -- dict ----------------------------------------------------------
    def dict_create(self):
        return self._new({})

    def dict_set(self, handle, key, value):
        self.objects[handle][key] = value

    def dict_get(self, handle, key):
        return self.objects[handle].get(key, 0)

    def dict_has(self, handle, key):
        return 1 if key in self.objects[handle] else 0

    def dict_length(self, handle):
        return len(self.objects[handle])

    # -- call stack ----------------------------------------------------
    def push_call_stack(self, name):
        self.call_stack.append(name.decode())

    def pop_call_stack(self):
        self.call_stack.pop()

    # -- exceptions ----------------------------------------------------
    def reset_exceptions(self):
        self.current = None
        self.handlers = []
        self.uncaught = []

    def exception_create(self, kind, message, filename, line):
        return self._new({
            "type": ctypes.create_string_buffer(kind),
            "message": ctypes.create_string_buffer(message),
            "file": filename.decode(),
            "line": line,
        })

    def exception_raise(self, kind, message, filename, line):
        self.current = self.exception_create(kind, message, filename, line)
        if not self.handlers:
            # the native runtime reports and exits here
            self.uncaught.append(kind.decode())

    def exception_get_current(self):
        return self.current

    def exception_set_current(self, handle):
        self.current = handle

    def exception_clear(self):
        self.current = None

    def exception_get_type(self, handle):
        return ctypes.addressof(self.objects[handle]["type"])

    def exception_get_message(self, handle):
        return ctypes.addressof(self.objects[handle]["message"])

    def exception_matches(self, handle, kind):
        return 1 if self.objects[handle]["type"].value == kind else 0

    def exception_push_handler(self, tag):
        self.handlers.append(tag.decode())

    def exception_pop_handler(self):
        self.handlers.pop()

    def register(self):
        signatures = {
            "list_create_i64": (ctypes.c_void_p,),
            "list_push_i64": (None, ctypes.c_void_p, ctypes.c_int64),
            "list_get_i64": (ctypes.c_int64, ctypes.c_void_p, ctypes.c_int64),
            "list_set_i64": (None, ctypes.c_void_p, ctypes.c_int64, ctypes.c_int64),
            "list_pop_i64": (ctypes.c_int64, ctypes.c_void_p),
            "list_length": (ctypes.c_int64, ctypes.c_void_p),
            "dict_create": (ctypes.c_void_p,),
            "dict_set": (None, ctypes.c_void_p, ctypes.c_char_p, ctypes.c_int64),
            "dict_get": (ctypes.c_int64, ctypes.c_void_p, ctypes.c_char_p),
            "dict_has": (ctypes.c_int32, ctypes.c_void_p, ctypes.c_char_p),
            "dict_length": (ctypes.c_int64, ctypes.c_void_p),
            "push_call_stack": (None, ctypes.c_char_p),
            "pop_call_stack": (None,),
            "exception_create": (ctypes.c_void_p, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_int64),
            "exception_raise": (None, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_int64),
            "exception_get_current": (ctypes.c_void_p,),
            "exception_set_current": (None, ctypes.c_void_p),
            "exception_clear": (None,),
            "exception_get_type": (ctypes.c_void_p, ctypes.c_void_p),
            "exception_get_message": (ctypes.c_void_p, ctypes.c_void_p),
            "exception_matches": (ctypes.c_int32, ctypes.c_void_p, ctypes.c_char_p),
            "exception_push_handler": (None, ctypes.c_char_p),
            "exception_pop_handler": (None,),
        }
        for name, signature in signatures.items():
            callback = ctypes.CFUNCTYPE(*signature)(getattr(self, name))
            self._callbacks.append(callback)
            JITSession.add_symbol(name, ctypes.cast(callback, ctypes.c_void_p).value)

        libc = ctypes.CDLL(None)
        for name in ("malloc", "free", "strlen", "strcpy", "strcat", "strcmp", "snprintf", "printf", "exit"):
            JITSession.add_symbol(name, ctypes.cast(getattr(libc, name), ctypes.c_void_p).value)


@pytest.fixture(scope="session")
def runtime():
    fake = FakeRuntime()
    fake.register()
    return fake


@pytest.fixture
def jit(runtime):
    """Compile source and return a function looking up JIT-compiled functions by name."""
    runtime.reset_exceptions()
    sessions = []

    def load(source, name, restype, *argtypes):
        session = JITSession()
        session.load(str(compile_source(source)))
        sessions.append(session)
        return ctypes.CFUNCTYPE(restype, *argtypes)(session.function_address(name))

    yield load
    sessions.clear()
