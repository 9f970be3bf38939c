from django.urls import path
from .views import (
    JobListCreateView, OpenJobListView, JobDetailView, JobOffersView, OfferAcceptView,
    OfferDeclineView, JobStartView, JobCompleteView, JobConfirmView, JobCancelView,
    JobReportIssueView, RegenerateStartCodeView, RegenerateCompletionCodeView, JobCodesView, AutoReleaseView,
    JobTipView, JobReviewsView, UserReviewsView,
)

urlpatterns = [
    path('', JobListCreateView.as_view(), name='job_list_create'),
    path('open/', OpenJobListView.as_view(), name='open_jobs'),
    path('auto-release/', AutoReleaseView.as_view(), name='job_auto_release'),
    path('<int:pk>/', JobDetailView.as_view(), name='job_detail'),
    path('<int:pk>/offers/', JobOffersView.as_view(), name='job_offers'),
    path('offers/<int:offer_id>/accept/', OfferAcceptView.as_view(), name='offer_accept'),
    path('offers/<int:offer_id>/decline/', OfferDeclineView.as_view(), name='offer_decline'),
    path('<int:pk>/start/', JobStartView.as_view(), name='job_start'),
    path('<int:pk>/complete/', JobCompleteView.as_view(), name='job_complete'),
    path('<int:pk>/confirm/', JobConfirmView.as_view(), name='job_confirm'),
    path('<int:pk>/cancel/', JobCancelView.as_view(), name='job_cancel'),
    path('<int:pk>/report-issue/', JobReportIssueView.as_view(), name='job_report_issue'),
    path('<int:pk>/regenerate-start-code/', RegenerateStartCodeView.as_view(), name='job_regenerate_start_code'),
    path('<int:pk>/regenerate-completion-code/', RegenerateCompletionCodeView.as_view(),
         name='job_regenerate_completion_code'),
    path('<int:pk>/codes/', JobCodesView.as_view(), name='job_codes'),
    path('<int:pk>/tip/', JobTipView.as_view(), name='job_tip'),
    path('<int:pk>/reviews/', JobReviewsView.as_view(), name='job_reviews'),
    path('reviews/users/<int:user_id>/', UserReviewsView.as_view(), name='user_reviews'),
]
