"""Flask extensions and shared per-process objects."""
from flask_mail import Mail
from flask_wtf.csrf import CSRFProtect

from .recommendations.services import RecommendationCache

mail = Mail()
csrf = CSRFProtect()
recommendation_cache = RecommendationCache()
