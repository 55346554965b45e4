from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse

from app.errors import QuoteError, UnknownInstrument
from app.schemas.quote import InstrumentKind

router = APIRouter()


@router.get('/quotes/{symbol}')
def get_quote(symbol: str, request: Request):
    collector = request.app.state.quote_collector
    try:
        quote = collector.get_stock(symbol)
    except QuoteError as exc:
        raise HTTPException(status_code=502, detail=exc.to_payload()) from exc
    return quote.model_dump(mode='json')


@router.get('/quotes')
def get_quotes(symbols: str, request: Request):
    collector = request.app.state.quote_collector
    req = [s.strip() for s in symbols.split(',') if s.strip()]
    if not req:
        raise HTTPException(status_code=400, detail='SYMBOLS_REQUIRED')
    return [q.model_dump(mode='json') for q in collector.collect_all(req, InstrumentKind.EQUITY)]


@router.get('/indices/{index_id}')
def get_index(index_id: str, request: Request):
    collector = request.app.state.quote_collector
    try:
        quote = collector.get_index(index_id)
    except UnknownInstrument as exc:
        raise HTTPException(status_code=404, detail='UNKNOWN_INDEX') from exc
    except QuoteError as exc:
        raise HTTPException(status_code=502, detail=exc.to_payload()) from exc
    return quote.model_dump(mode='json')


@router.get('/market/overview')
def market_overview(request: Request):
    return request.app.state.market_tools.get_market_overview()


@router.get('/store/quotes')
def stored_quotes(request: Request):
    store = request.app.state.quote_store
    return [q.model_dump(mode='json') for q in store.select_all()]


@router.post('/sync/trigger')
def trigger_sync(request: Request):
    report = request.app.state.sync_scheduler.trigger()
    return report.model_dump(mode='json')


@router.get('/metrics/sync')
def sync_metrics(request: Request):
    metrics = request.app.state.sync_scheduler.metrics()
    metrics['collector'] = request.app.state.quote_collector.metrics()
    metrics['store'] = request.app.state.quote_store.metrics()
    return metrics


@router.get('/tools')
def list_tools(request: Request):
    return {'tools': request.app.state.market_tools.list_tools()}


@router.post('/tools/{name}')
def call_tool(name: str, request: Request, arguments: dict | None = Body(default=None)):
    tools = request.app.state.market_tools
    try:
        result = tools.call_tool(name, arguments or {})
    except UnknownInstrument as exc:
        return JSONResponse(status_code=404, content={'error': str(exc)})
    except KeyError as exc:
        return JSONResponse(status_code=400, content={'error': f'missing argument: {exc.args[0]}'})
    except (ValueError, QuoteError) as exc:
        return JSONResponse(status_code=400, content={'error': str(exc)})
    return {'tool': name, 'result': result}
