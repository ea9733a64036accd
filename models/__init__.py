from .user import User
from .position import Position
from .transaction import Transaction
from .auto_invest import AutoInvestSchedule, AutomationLog
from .ai_insight import AIInsight
from .weekly_report import WeeklyReport
from .watchlist import Watchlist, WatchlistItem
from .personalization import PersonalizationSettings
from .sell_alert import SellAlert
