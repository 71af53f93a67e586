from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from django.db.models import Count
from drf_spectacular.utils import extend_schema

from .models import Invoice, CardExpense, CardCredit
from .serializers import (
    CreditCardSerializer,
    CreditCardCreateSerializer,
    CreditCardUpdateSerializer,
    CardOverviewSerializer,
    InvoiceSerializer,
    InvoiceCreateSerializer,
    InvoiceFilterSerializer,
    PayInvoiceSerializer,
    CardExpenseSerializer,
    ExpenseFilterSerializer,
    PurchaseAllocationSerializer,
    AllocationResultSerializer,
    ExpenseUpdateSerializer,
    ReorderExpenseSerializer,
    MoveExpenseSerializer,
    CardCreditSerializer,
    CardCreditCreateSerializer,
    CreditFilterSerializer,
)

from apps.cards.services import (
    create_card,
    update_card,
    deactivate_card,
    delete_card,
    get_card_overview,
    list_cards,
    create_invoice,
    close_invoice,
    pay_invoice,
    reopen_invoice,
    delete_invoice,
    allocate_installments,
    update_expense,
    move_expense,
    delete_expense,
    reorder_expense,
    list_invoice_expenses,
    add_credit,
    delete_credit,
    # Exceptions
    CardsServiceError,
    CardNotFoundError,
    InvoiceNotFoundError,
    EntryNotFoundError,
    DuplicateInvoiceError,
    InvalidTransitionError,
    CannotDeleteSettledError,
    InvoiceNotEditableError,
    CardInUseError,
    CreditLimitExceededError,
    PartialAllocationFailure,
    EntryMovedError,
)


NOT_FOUND_ERRORS = (CardNotFoundError, InvoiceNotFoundError, EntryNotFoundError)

CONFLICT_ERRORS = (
    DuplicateInvoiceError,
    InvalidTransitionError,
    CannotDeleteSettledError,
    InvoiceNotEditableError,
    CardInUseError,
    CreditLimitExceededError,
    EntryMovedError,
)


def service_error_response(error: CardsServiceError) -> Response:
    """Translate a service exception into an error response."""
    if isinstance(error, NOT_FOUND_ERRORS):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, CONFLICT_ERRORS):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, PartialAllocationFailure):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        code = status.HTTP_400_BAD_REQUEST

    body = {'error': str(error)}
    if isinstance(error, CreditLimitExceededError) and error.available_limit is not None:
        body['available_limit'] = error.available_limit
    return Response(body, status=code)


class LedgerPagination(PageNumberPagination):
    """Custom pagination for ledger lists."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 200


class CreditCardViewSet(viewsets.ModelViewSet):
    """
    ViewSet for credit cards.

    All business logic is handled by services.
    Views are thin HTTP handlers only.

    list: Active cards (``?include_inactive=true`` for all)
    create: Register a card
    retrieve: Get a card
    update/partial_update: Change card details
    destroy: Remove a card without ledger entries
    """

    serializer_class = CreditCardSerializer
    permission_classes = [IsAdminUser]
    pagination_class = LedgerPagination

    def get_queryset(self):
        include_inactive = self.request.query_params.get('include_inactive', '').lower() in ('1', 'true')
        return list_cards(include_inactive=include_inactive or self.action != 'list')

    def get_serializer_class(self):
        if self.action == 'create':
            return CreditCardCreateSerializer
        elif self.action in ['update', 'partial_update']:
            return CreditCardUpdateSerializer
        return CreditCardSerializer

    def create(self, request, *args, **kwargs):
        """Register a new card."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            card = create_card(**serializer.validated_data)
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(CreditCardSerializer(card).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        """Change card details; omitted fields stay unchanged."""
        serializer = CreditCardUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            card = update_card(card_id=self.kwargs['pk'], **serializer.validated_data)
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(CreditCardSerializer(card).data)

    def destroy(self, request, *args, **kwargs):
        try:
            delete_card(card_id=self.kwargs['pk'])
        except CardsServiceError as e:
            return service_error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(responses={200: CardOverviewSerializer})
    @action(detail=True, methods=['get'])
    def overview(self, request, pk=None):
        """
        Card dashboard: current invoice, limit figures and recent invoices.

        GET /api/cards/cards/{id}/overview/
        """
        try:
            overview = get_card_overview(card_id=pk)
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(CardOverviewSerializer(overview).data)

    @action(detail=True, methods=['post'])
    def deactivate(self, request, pk=None):
        """
        Soft-delete a card.

        POST /api/cards/cards/{id}/deactivate/
        """
        try:
            card = deactivate_card(card_id=pk)
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(CreditCardSerializer(card).data)


class InvoiceViewSet(viewsets.ModelViewSet):
    """
    ViewSet for invoices.

    list: Invoices (filter by ``card`` and ``status``)
    create: Open the invoice of a given month
    retrieve: Get an invoice
    destroy: Delete an unpaid invoice with all its entries
    close / pay / reopen: Lifecycle transitions
    expenses: Statement lines in display order
    """

    serializer_class = InvoiceSerializer
    permission_classes = [IsAdminUser]
    pagination_class = LedgerPagination
    http_method_names = ['get', 'post', 'delete', 'head', 'options']

    def get_queryset(self):
        queryset = (
            Invoice.objects
            .select_related('card')
            .annotate(expenses_count=Count('expenses'))
        )

        if self.action != 'list':
            return queryset

        filter_serializer = InvoiceFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        params = filter_serializer.validated_data

        if 'card' in params:
            queryset = queryset.filter(card_id=params['card'])
        if 'status' in params:
            queryset = queryset.filter(status=params['status'])

        return queryset

    def get_serializer_class(self):
        if self.action == 'create':
            return InvoiceCreateSerializer
        return InvoiceSerializer

    def create(self, request, *args, **kwargs):
        """Open the invoice of a given month for a card."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            invoice = create_invoice(
                card_id=serializer.validated_data['card'],
                month=serializer.validated_data['month'],
                year=serializer.validated_data['year'],
            )
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):
        """Delete an invoice with its entries; returns what was released."""
        try:
            result = delete_invoice(invoice_id=self.kwargs['pk'])
        except CardsServiceError as e:
            return service_error_response(e)
        return Response(result)

    @action(detail=True, methods=['post'])
    def close(self, request, pk=None):
        """
        Close an open invoice.

        POST /api/cards/invoices/{id}/close/
        """
        try:
            invoice = close_invoice(invoice_id=pk)
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(InvoiceSerializer(invoice).data)

    @extend_schema(request=PayInvoiceSerializer, responses={200: InvoiceSerializer})
    @action(detail=True, methods=['post'])
    def pay(self, request, pk=None):
        """
        Settle a closed or overdue invoice.

        POST /api/cards/invoices/{id}/pay/
        Body: {"bank_account": "<uuid>", "payment_date": "YYYY-MM-DD"}
        """
        serializer = PayInvoiceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            invoice = pay_invoice(
                invoice_id=pk,
                bank_account_id=serializer.validated_data['bank_account'],
                payment_date=serializer.validated_data['payment_date'],
            )
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(InvoiceSerializer(invoice).data)

    @action(detail=True, methods=['post'])
    def reopen(self, request, pk=None):
        """
        Return a closed or overdue invoice to open.

        POST /api/cards/invoices/{id}/reopen/
        """
        try:
            invoice = reopen_invoice(invoice_id=pk)
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(InvoiceSerializer(invoice).data)

    @extend_schema(responses={200: CardExpenseSerializer(many=True)})
    @action(detail=True, methods=['get'])
    def expenses(self, request, pk=None):
        """
        Statement lines of the invoice in display order.

        GET /api/cards/invoices/{id}/expenses/
        """
        invoice = self.get_object()
        expenses = list_invoice_expenses(invoice_id=invoice.id)
        return Response(CardExpenseSerializer(expenses, many=True).data)


class CardExpenseViewSet(viewsets.ModelViewSet):
    """
    ViewSet for expense entries.

    list: Expenses (filter by ``card``, ``invoice``, ``pending``)
    create: Post a purchase, spread over installments
    retrieve: Get an expense
    partial_update: Edit an expense of an open invoice
    destroy: Delete an expense
    reorder / move: Statement position and invoice assignment
    """

    serializer_class = CardExpenseSerializer
    permission_classes = [IsAdminUser]
    pagination_class = LedgerPagination
    http_method_names = ['get', 'post', 'patch', 'delete', 'head', 'options']

    def get_queryset(self):
        queryset = CardExpense.objects.select_related('category')

        if self.action != 'list':
            return queryset

        filter_serializer = ExpenseFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        params = filter_serializer.validated_data

        if 'card' in params:
            queryset = queryset.filter(card_id=params['card'])
        if 'invoice' in params:
            queryset = queryset.filter(invoice_id=params['invoice'])
        if params.get('pending'):
            queryset = queryset.filter(invoice__isnull=True)

        return queryset

    def get_serializer_class(self):
        if self.action == 'create':
            return PurchaseAllocationSerializer
        elif self.action == 'partial_update':
            return ExpenseUpdateSerializer
        return CardExpenseSerializer

    @extend_schema(request=PurchaseAllocationSerializer, responses={201: AllocationResultSerializer})
    def create(self, request, *args, **kwargs):
        """
        Post a purchase; one expense per installment.

        POST /api/cards/expenses/
        """
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = allocate_installments(
                card_id=data['card'],
                total_amount=data['amount'],
                installment_count=data['installments'],
                purchase_date=data['purchase_date'],
                description=data['description'],
                category_id=data.get('category'),
                first_reference_month=data.get('first_reference_month'),
                supplier_name=data.get('supplier_name', ''),
                reference_number=data.get('reference_number', ''),
                notes=data.get('notes', ''),
                created_by=request.user.get_username(),
            )
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(AllocationResultSerializer(result).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=ExpenseUpdateSerializer, responses={200: CardExpenseSerializer})
    def partial_update(self, request, *args, **kwargs):
        serializer = ExpenseUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        changes = dict(serializer.validated_data)
        if 'category' in changes:
            changes['category_id'] = changes.pop('category')

        try:
            expense = update_expense(expense_id=self.kwargs['pk'], **changes)
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(CardExpenseSerializer(expense).data)

    def destroy(self, request, *args, **kwargs):
        try:
            delete_expense(expense_id=self.kwargs['pk'])
        except CardsServiceError as e:
            return service_error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(request=ReorderExpenseSerializer, responses={200: CardExpenseSerializer(many=True)})
    @action(detail=True, methods=['post'])
    def reorder(self, request, pk=None):
        """
        Swap the expense with its neighbour.

        POST /api/cards/expenses/{id}/reorder/
        Body: {"direction": "up" | "down"}

        Returns the invoice's statement in its new order.
        """
        serializer = ReorderExpenseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            expense = reorder_expense(expense_id=pk, direction=serializer.validated_data['direction'])
        except CardsServiceError as e:
            return service_error_response(e)

        expenses = list_invoice_expenses(invoice_id=expense.invoice_id)
        return Response(CardExpenseSerializer(expenses, many=True).data)

    @extend_schema(request=MoveExpenseSerializer, responses={200: CardExpenseSerializer})
    @action(detail=True, methods=['post'])
    def move(self, request, pk=None):
        """
        Reassign the expense to another invoice of the same card.

        POST /api/cards/expenses/{id}/move/
        Body: {"invoice": "<uuid>" | null}
        """
        serializer = MoveExpenseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            expense = move_expense(expense_id=pk, target_invoice_id=serializer.validated_data['invoice'])
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(CardExpenseSerializer(expense).data)


class CardCreditViewSet(viewsets.ModelViewSet):
    """
    ViewSet for refunds.

    list: Credits (filter by ``card`` and ``invoice``)
    create: Post a refund against an open invoice
    retrieve: Get a credit
    destroy: Remove a credit
    """

    serializer_class = CardCreditSerializer
    permission_classes = [IsAdminUser]
    pagination_class = LedgerPagination
    http_method_names = ['get', 'post', 'delete', 'head', 'options']

    def get_queryset(self):
        queryset = CardCredit.objects.all()

        if self.action != 'list':
            return queryset

        filter_serializer = CreditFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        params = filter_serializer.validated_data

        if 'card' in params:
            queryset = queryset.filter(card_id=params['card'])
        if 'invoice' in params:
            queryset = queryset.filter(invoice_id=params['invoice'])

        return queryset

    def get_serializer_class(self):
        if self.action == 'create':
            return CardCreditCreateSerializer
        return CardCreditSerializer

    @extend_schema(request=CardCreditCreateSerializer, responses={201: CardCreditSerializer})
    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            credit = add_credit(
                card_id=data['card'],
                invoice_id=data.get('invoice'),
                amount=data['amount'],
                credit_date=data['credit_date'],
                description=data['description'],
                reference_number=data.get('reference_number', ''),
                notes=data.get('notes', ''),
                created_by=request.user.get_username(),
            )
        except CardsServiceError as e:
            return service_error_response(e)

        return Response(CardCreditSerializer(credit).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):
        try:
            delete_credit(credit_id=self.kwargs['pk'])
        except CardsServiceError as e:
            return service_error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)
