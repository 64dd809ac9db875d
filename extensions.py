# extensions.py
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

# تهيئة الـ SQLAlchemy (قاعدة البيانات)
db = SQLAlchemy()

# تهيئة الـ LoginManager (إدارة الجلسة والمستخدم الحالي)
login_manager = LoginManager()

# حماية CSRF لطلبات الجلسة (يتم استثناء الـ webhooks)
csrf = CSRFProtect()
