# meet/users/serializers.py
from rest_framework import serializers
from .models import User


class UserMeSerializer(serializers.ModelSerializer):
    userId = serializers.IntegerField(source="id", read_only=True)
    displayName = serializers.CharField(source="display_name", read_only=True)
    collegeDomain = serializers.CharField(source="college_domain", read_only=True)
    isVerified = serializers.BooleanField(source="is_verified", read_only=True)

    class Meta:
        model = User
        fields = ["userId", "email", "displayName", "collegeDomain", "isVerified"]
