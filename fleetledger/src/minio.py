from typing import BinaryIO
from minio import Minio
from fleetledger.src.constants import (
    MINIO_HOST,
    MINIO_PASSWORD,
    MINIO_PORT,
    MINIO_USERNAME,
)

# MinIO client instance
client: Minio = Minio(
    endpoint=f"{MINIO_HOST}:{MINIO_PORT}",
    access_key=MINIO_USERNAME,
    secret_key=MINIO_PASSWORD,
    secure=False,
)


def createBucket(bucketName: str) -> None:
    """
    Create the bucket in MinIO unless it already exists.

    Raises:
        S3Error: If the bucket cannot be created.
    """
    if not client.bucket_exists(bucketName):
        client.make_bucket(bucketName)


def deleteBucket(bucketName: str) -> None:
    """
    Delete a bucket and all its contents from MinIO.

    Raises:
        S3Error: If the bucket or objects cannot be deleted.
    """
    if not client.bucket_exists(bucketName):
        return
    for object in client.list_objects(bucketName, recursive=True):
        client.remove_object(bucketName, object.object_name)
    client.remove_bucket(bucketName)


def uploadFile(
    bucketName: str,
    objectID: str,
    size: int,
    fileObject: BinaryIO,
    contentType: str = "application/octet-stream",
) -> None:
    """
    Store a file in MinIO under `objectID`, replacing any previous version.

    Args:
        bucketName (str): The name of the bucket where the file will be stored.
        objectID (str): The key of the object, the invoice id for invoice files.
        size (int): The size of the file in bytes.
        fileObject (BinaryIO): A file-like object containing the data to upload.
        contentType (str): MIME type recorded with the object.
    """
    client.put_object(bucketName, objectID, fileObject, size, content_type=contentType)


def downloadFile(bucketName: str, objectID: str) -> bytes:
    """Fetch the raw bytes of an object, the connection is released afterwards."""
    response = client.get_object(bucketName, objectID)
    try:
        return response.read()
    finally:
        response.close()
        response.release_conn()


def deleteFile(bucketName: str, objectID: str) -> None:
    client.remove_object(bucketName, objectID)
