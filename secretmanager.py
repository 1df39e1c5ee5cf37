import json

from google.cloud import secretmanager


def get_secret(secret_id):
    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": secret_id})
    return response.payload.data.decode("UTF-8")


def get_service_account_info(secret_id) -> dict:
    """Loads a service-account key stored as a JSON secret."""
    return json.loads(get_secret(secret_id))
