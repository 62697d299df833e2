from newsletter.api.v1.router import api_v1_router

__all__ = ['api_v1_router']
