# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_admin_database_url,
    get_valkey_url,
    get_email_config,
    get_identity_config,
    get_payment_network_config,
)
from clients.postgres_client import PostgresClient, Transaction
from clients.valkey_client import ValkeyClient
from clients.email_client import EmailGatewayClient, EmailGatewayError
from clients.payment_request_client import PaymentRequestClient, PaymentNetworkError, PaymentEvent
