from botengine.models.bot_config import BotEngineConfig
from botengine.models.bot_session import BotSession
from botengine.models.dynamic_menu import DynamicMenu
from botengine.models.flow import BotFlow, BotFlowEdge, BotFlowNode
from botengine.models.instance import WhatsAppInstance
from botengine.models.legacy_menu import LegacyMenu
from botengine.models.message_log import BotMessageLog
from botengine.models.plan import Plan
from botengine.models.trial_config import TrialIntegrationConfig

__all__ = [
    "BotSession",
    "BotMessageLog",
    "BotEngineConfig",
    "DynamicMenu",
    "LegacyMenu",
    "BotFlow",
    "BotFlowNode",
    "BotFlowEdge",
    "WhatsAppInstance",
    "TrialIntegrationConfig",
    "Plan",
]
