from rest_framework import serializers
from .models import Review


class ReviewSerializer(serializers.ModelSerializer):
    reviewer_name = serializers.SerializerMethodField()
    job_title = serializers.CharField(source='job.title', read_only=True)

    class Meta:
        model = Review
        fields = ['id', 'job', 'job_title', 'reviewer', 'reviewer_name', 'reviewee', 'stars', 'text', 'created_at']
        read_only_fields = fields

    def get_reviewer_name(self, obj):
        return obj.reviewer.first_name or obj.reviewer.username


class ReviewCreateSerializer(serializers.Serializer):
    stars = serializers.IntegerField(min_value=1, max_value=5)
    text = serializers.CharField(min_length=10, max_length=1000)
