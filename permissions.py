# permissions.py
from functools import wraps

from flask import abort
from flask_login import current_user, login_required

from order_workflow import ADMIN_ROLES


def role_required(*allowed_roles):
    """
    Decorator لتقييد الوصول على حسب الدور.
    - admin / sub-admin: صلاحية دخول كاملة على كل الـ endpoints.
    - باقي الأدوار: يجب أن تكون ضمن allowed_roles حتى يُسمح لها بالدخول.
    - بدون allowed_roles: يكفي أن يكون للمستخدم دور مربوط.

    القواعد الدقيقة لكل عملية (مثل حالة الطلب) تتحقق منها OrderService،
    هذا الـ decorator هو الحاجز الأول فقط.

    مثال استخدام:
        @role_required("engineering", "site")
        def view():
            ...
    """

    def decorator(view_func):
        @wraps(view_func)
        @login_required
        def wrapped_view(*args, **kwargs):
            # مستخدم غير مسجّل دخول (المفروض login_required يمنع ذلك)
            if not current_user.is_authenticated:
                abort(401)

            user_role = current_user.role_name

            # 1) admin / sub-admin: صلاحيات كاملة دائماً
            if user_role in ADMIN_ROLES:
                return view_func(*args, **kwargs)

            # 2) لو مفيش دور مربوط بالمستخدم
            if user_role is None:
                abort(403)

            # 3) لو تم تمرير أدوار مسموح بها، يجب أن يكون دور المستخدم ضمنها
            if allowed_roles and user_role not in allowed_roles:
                abort(403)

            return view_func(*args, **kwargs)

        return wrapped_view

    return decorator
