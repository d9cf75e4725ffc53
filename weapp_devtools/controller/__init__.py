from weapp_devtools.controller.registry import RegisteredAction, Registry
from weapp_devtools.controller.service import Controller
from weapp_devtools.controller.views import ActionResult

__all__ = ['ActionResult', 'Controller', 'RegisteredAction', 'Registry']
