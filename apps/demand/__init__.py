from .router import router
from .scheduler import init_demand_scheduler

__all__ = ["router", "init_demand_scheduler"]
