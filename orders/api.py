# orders/api.py
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import HTMLResponse

from orders.cache import MirrorCache
from orders.pipeline import IngestionPipeline
from orders.query import QueryService

INDEX_HTML = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>Order viewer</title></head>
<body>
  <h1>Order viewer</h1>
  <form id="f">
    <input id="id" placeholder="order_uid" style="width:400px"/>
    <button type="submit">Get</button>
  </form>
  <pre id="out" style="white-space:pre-wrap;border:1px solid #ddd;padding:10px;margin-top:10px"></pre>
  <script>
    document.getElementById('f').onsubmit = async e => {
      e.preventDefault();
      const id = document.getElementById('id').value.trim();
      if(!id) return;
      const res = await fetch('/order/'+encodeURIComponent(id));
      if(res.status==200){
        document.getElementById('out').textContent = await res.text();
      } else {
        document.getElementById('out').textContent = 'Not found ('+res.status+')';
      }
    }
  </script>
</body>
</html>"""


def build_app(
    query: QueryService,
    pipeline: Optional[IngestionPipeline] = None,
    cache: Optional[MirrorCache] = None,
    lookup_timeout: Optional[float] = 5.0,
    readiness: Optional[Callable[[], Awaitable[bool]]] = None,
) -> FastAPI:
    app = FastAPI(title="Order Service")
    cache = cache if cache is not None else query.cache

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return INDEX_HTML

    @app.get("/healthz")
    async def healthz():
        return {
            "ok": True,
            "cached": len(cache),
            "stats": dict(pipeline.stats) if pipeline is not None else {},
        }

    @app.get("/readyz")
    async def readyz():
        if readiness is not None and not await readiness():
            raise HTTPException(status_code=503, detail="store unavailable")
        return {"ok": True}

    @app.get("/order/")
    async def missing_order_id():
        raise HTTPException(status_code=400, detail="missing id")

    @app.get("/order/{identifier}")
    async def get_order(identifier: str):
        if not identifier:
            raise HTTPException(status_code=400, detail="missing id")
        res = await query.lookup(identifier, timeout=lookup_timeout)
        if not res.found:
            raise HTTPException(status_code=404, detail="order not found")
        return Response(content=res.payload, media_type="application/json")

    return app
