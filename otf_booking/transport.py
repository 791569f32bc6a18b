"""Header-injecting middleware around a requests transport adapter.

A middleware takes an adapter and returns a new adapter that mutates each
outgoing request before handing it to the adapter it wraps.
"""
from typing import Callable, Optional
from requests.adapters import BaseAdapter, HTTPAdapter

Middleware = Callable[[BaseAdapter], BaseAdapter]

class HeaderAdapter(BaseAdapter):
    def __init__(self, inner: BaseAdapter, key: str, value: str):
        super().__init__()
        self.inner = inner
        self.key = key
        self.value = value

    def send(self, request, **kwargs):
        request.headers[self.key] = self.value
        return self.inner.send(request, **kwargs)

    def close(self):
        self.inner.close()

def add_header(key: str, value: str) -> Middleware:
    def middleware(adapter: BaseAdapter) -> BaseAdapter:
        return HeaderAdapter(adapter, key, value)
    return middleware

def chain(adapter: Optional[BaseAdapter] = None, *middlewares: Middleware) -> BaseAdapter:
    """Compose middlewares around adapter.

    The last middleware runs last, closest to the wire, so it wins when two
    middlewares set the same header.
    """
    if adapter is None:
        adapter = HTTPAdapter()

    for middleware in reversed(middlewares):
        adapter = middleware(adapter)

    return adapter
