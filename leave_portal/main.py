import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from leave_portal.config import settings
from leave_portal.routers import admin, auth, calendar, leave, rookie

logging.basicConfig(level=settings.log_level.upper(), format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app = FastAPI(title='Salon Leave Portal')

app.include_router(auth.router)
app.include_router(calendar.router)
app.include_router(leave.router)
app.include_router(admin.router)
app.include_router(rookie.router)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
