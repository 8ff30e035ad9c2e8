"""Clients for the CRM and the campaign tool."""

from leadsync.integrations.instantly import InstantlyClient
from leadsync.integrations.pipedrive import PipedriveClient

__all__ = ["InstantlyClient", "PipedriveClient"]
