from newsletter.services.dispatch_service import DispatchService

__all__ = ['DispatchService']
