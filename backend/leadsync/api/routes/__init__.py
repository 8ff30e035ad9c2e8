"""API route handlers for leadsync."""

from leadsync.api.routes import health as health
from leadsync.api.routes import sync as sync
from leadsync.api.routes import webhooks as webhooks
