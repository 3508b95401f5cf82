from app.models.user import User
from app.models.catalog_item import CatalogItem, ItemKind
from app.models.roster_entry import RosterEntry
from app.models.purchase import PurchaseRecord
from app.models.access_log import AccessLog
from app.models.lesson_progress import LessonProgress

# add ALL models here
