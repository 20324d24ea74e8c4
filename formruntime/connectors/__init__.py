"""Submit targets a form can hand its data to."""

from formruntime.connectors.base import BaseConnector, FormConnector
from formruntime.connectors.csv_export import CSVExportConnector
from formruntime.connectors.webhook import WebhookConnector

__all__ = [
    "BaseConnector",
    "CSVExportConnector",
    "FormConnector",
    "WebhookConnector",
]
