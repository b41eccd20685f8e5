import logging

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from core.exceptions import NotFoundError, StoreUnavailableError, ValidationError
from .serializers import ServiceSerializer
from .services import ServiceCatalog

logger = logging.getLogger(__name__)


@api_view(['GET'])
def list_services(request):
    kind = request.query_params.get('kind', 'training')
    catalog = ServiceCatalog.from_settings()
    try:
        services = catalog.list_active_services(kind)
    except ValidationError as e:
        return Response({'errors': e.errors}, status=status.HTTP_400_BAD_REQUEST)

    serializer = ServiceSerializer(services, many=True, context={'now': timezone.now()})
    return Response({'kind': kind, 'services': serializer.data})


@api_view(['GET'])
def get_service(request, service_id):
    catalog = ServiceCatalog.from_settings()
    try:
        service = catalog.get_bookable_service(service_id)
    except NotFoundError:
        return Response({'error': 'This service is currently unavailable'}, status=status.HTTP_404_NOT_FOUND)
    except StoreUnavailableError:
        logger.exception('Could not load service %s', service_id)
        return Response(
            {'error': 'Something went wrong. Please try again.'},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response(ServiceSerializer(service, context={'now': timezone.now()}).data)
