# app/models/__init__.py
from app.models.user_models import User
from app.models.activity_models import UserActivity
from app.models.service_models import Service
from app.models.candidate_models import Candidate, ResultStatus
from app.models.coupon_models import Coupon, CouponType
from app.models.order_models import Order, OrderStatus, OrderType
from app.models.payment_models import Payment, PaymentMethod, PaymentStatus
from app.models.review_models import Review
