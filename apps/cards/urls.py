from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'cards'

router = DefaultRouter()
router.register(r'cards', views.CreditCardViewSet, basename='card')
router.register(r'invoices', views.InvoiceViewSet, basename='invoice')
router.register(r'expenses', views.CardExpenseViewSet, basename='expense')
router.register(r'credits', views.CardCreditViewSet, basename='credit')

urlpatterns = [
    # Card routes
    # GET    /api/cards/cards/                  - List cards
    # POST   /api/cards/cards/                  - Register card
    # GET    /api/cards/cards/{id}/             - Card details
    # PATCH  /api/cards/cards/{id}/             - Update card
    # DELETE /api/cards/cards/{id}/             - Delete card without entries
    # GET    /api/cards/cards/{id}/overview/    - Limit and invoice dashboard
    # POST   /api/cards/cards/{id}/deactivate/  - Soft delete

    # Invoice routes
    # GET    /api/cards/invoices/               - List invoices (?card=&status=)
    # POST   /api/cards/invoices/               - Open invoice for a month
    # GET    /api/cards/invoices/{id}/          - Invoice details
    # DELETE /api/cards/invoices/{id}/          - Delete invoice and its entries
    # POST   /api/cards/invoices/{id}/close/    - Close
    # POST   /api/cards/invoices/{id}/pay/      - Settle from a bank account
    # POST   /api/cards/invoices/{id}/reopen/   - Reopen
    # GET    /api/cards/invoices/{id}/expenses/ - Statement in display order

    # Expense routes
    # GET    /api/cards/expenses/               - List (?card=&invoice=&pending=)
    # POST   /api/cards/expenses/               - Post purchase (installments)
    # PATCH  /api/cards/expenses/{id}/          - Edit expense
    # DELETE /api/cards/expenses/{id}/          - Delete expense
    # POST   /api/cards/expenses/{id}/reorder/  - Move up/down
    # POST   /api/cards/expenses/{id}/move/     - Move to another invoice

    # Credit routes
    # GET    /api/cards/credits/                - List credits
    # POST   /api/cards/credits/                - Post refund
    # DELETE /api/cards/credits/{id}/           - Remove refund

    path('', include(router.urls)),
]
