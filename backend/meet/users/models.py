# meet/users/models.py
from django.db import models
from django.contrib.auth.models import AbstractUser, BaseUserManager

from meet.users.domains import college_domain_of


class UserManager(BaseUserManager):
    use_in_migrations = True

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("email must be set")

        email = self.normalize_email(str(email).strip()).lower()
        extra_fields.setdefault("college_domain", college_domain_of(email))
        user = self.model(email=email, **extra_fields)

        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()

        user.save(using=self._db)
        return user

    def create_superuser(self, email, password, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("is_active", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password=password, **extra_fields)


class User(AbstractUser):
    # username 대신 학교 이메일로 로그인
    username = None

    email = models.EmailField(unique=True)

    # 표시용 프로필 (매칭 로직은 id만 사용)
    display_name = models.CharField(max_length=50, blank=True, default="")
    college_domain = models.CharField(max_length=100, blank=True, default="")
    is_verified = models.BooleanField(default=False)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    def __str__(self):
        return f"{self.id} {self.email}"
