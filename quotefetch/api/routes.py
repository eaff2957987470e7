import asyncio

from fastapi import APIRouter, HTTPException, Request

from quotefetch.schemas.fetch import FetchAccepted, FetchRequest

router = APIRouter()


def _service(request: Request):
    return request.app.state.quote_service


@router.post('/quotes/fetch', response_model=FetchAccepted)
def fetch_quotes(req: FetchRequest, request: Request):
    symbols = [s.strip() for s in req.symbols if s.strip()]
    if not symbols:
        raise HTTPException(status_code=400, detail='SYMBOLS_REQUIRED')
    pending_count = _service(request).submit(symbols)
    return FetchAccepted(pending_count=pending_count)


@router.get('/quotes/status')
def get_fetch_status(request: Request):
    service = _service(request)
    metrics = service.metrics()
    return {
        'pending_count': service.pending_count,
        'running': metrics['running'],
        'metrics': metrics,
    }


@router.post('/quotes/cancel')
def cancel_fetch(request: Request):
    _service(request).cancel()
    return {'cancelled': True}


@router.get('/quotes/events')
def get_recent_events(request: Request, limit: int = 50):
    if limit < 0:
        raise HTTPException(status_code=400, detail='INVALID_LIMIT')
    return request.app.state.event_log.recent(limit)


@router.get('/quotes/{symbol}')
def get_latest_quote(symbol: str, request: Request):
    quote = request.app.state.event_log.latest_quote(symbol)
    if quote is None:
        raise HTTPException(status_code=404, detail='quote not found')
    return quote.model_dump(mode='json')


@router.get('/history/{symbol}')
async def get_history(symbol: str, request: Request):
    future = _service(request).fetch_history(symbol)
    history = await asyncio.wrap_future(future)
    if history is None:
        raise HTTPException(status_code=502, detail='HISTORY_UNAVAILABLE')
    return history.model_dump(mode='json')
