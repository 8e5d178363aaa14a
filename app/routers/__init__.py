# Routers module for Event Ticketing API
from app.routers import auth
from app.routers import events
from app.routers import ticket_types
from app.routers import transactions
from app.routers import tickets
from app.routers import scan_history
from app.routers import payments
from app.routers import users
from app.routers import roles
