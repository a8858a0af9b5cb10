import logging
import os
from logging.handlers import RotatingFileHandler

from config import settings

LOGS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'logs')
if not os.path.exists(LOGS_DIR):
    os.makedirs(LOGS_DIR, exist_ok=True)

LOG_FILE = os.path.join(LOGS_DIR, f'pearl_agent_{os.getpid()}.log')

logger = logging.getLogger('PearlRetrievalAgent')
logger.setLevel(logging.DEBUG)

console_handler = logging.StreamHandler()
file_handler = RotatingFileHandler(LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=3, encoding='utf-8')

console_handler.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
file_handler.setLevel(logging.DEBUG)

log_format = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s')
console_handler.setFormatter(log_format)
file_handler.setFormatter(log_format)

logger.addHandler(console_handler)
logger.addHandler(file_handler)
