from orderdesk.sales.assignment import AssignmentManager, assignment_manager
from orderdesk.sales.conversion import ConversionPipeline, conversion_pipeline
from orderdesk.sales.lead_lifecycle import LeadLifecycle, lead_lifecycle
from orderdesk.sales.leads import LeadService, lead_service
from orderdesk.sales.order_lifecycle import OrderLifecycle, order_lifecycle
from orderdesk.sales.orders import OrderService, order_service

__all__ = [
    "AssignmentManager",
    "ConversionPipeline",
    "LeadLifecycle",
    "LeadService",
    "OrderLifecycle",
    "OrderService",
    "assignment_manager",
    "conversion_pipeline",
    "lead_lifecycle",
    "lead_service",
    "order_lifecycle",
    "order_service",
]
