from rest_framework import serializers
from apps.users.serializers import PublicUserSerializer
from .models import Message


class MessageSerializer(serializers.ModelSerializer):
    sender = PublicUserSerializer(read_only=True)

    class Meta:
        model = Message
        fields = ['id', 'thread', 'sender', 'body', 'created_at']
        read_only_fields = ['id', 'thread', 'sender', 'created_at']

    def validate_body(self, value):
        if not value.strip():
            raise serializers.ValidationError("Message cannot be empty.")
        return value.strip()
