from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from coreason_rharness.config import HarnessConfig
from coreason_rharness.storage import S3Storage


@pytest.fixture
def mock_boto3() -> Any:
    with patch("coreason_rharness.storage.boto3") as mock:
        yield mock


def test_s3_storage_init(mock_boto3: Any) -> None:
    storage = S3Storage(bucket="my-bucket", region="us-east-1")
    mock_boto3.client.assert_called_with(
        "s3",
        region_name="us-east-1",
        aws_access_key_id=None,
        aws_secret_access_key=None,
        endpoint_url=None,
    )
    assert storage.bucket == "my-bucket"
    assert storage.prefix == "rharness/"
    assert storage.expires_in == 3600


def test_from_config_without_bucket(mock_boto3: Any, tmp_path: Path) -> None:
    assert S3Storage.from_config(HarnessConfig(work_dir=tmp_path)) is None
    mock_boto3.client.assert_not_called()


def test_from_config_with_bucket(mock_boto3: Any, tmp_path: Path) -> None:
    config = HarnessConfig(work_dir=tmp_path, s3_bucket="widgets", s3_endpoint_url="http://minio:9000")
    storage = S3Storage.from_config(config)
    assert storage is not None
    assert storage.bucket == "widgets"
    assert mock_boto3.client.call_args.kwargs["endpoint_url"] == "http://minio:9000"


def test_content_type() -> None:
    assert S3Storage.content_type(Path("widget_1.html")) == "text/html"
    assert S3Storage.content_type(Path("blob.unknownext")) == "application/octet-stream"


@pytest.mark.asyncio
async def test_s3_upload_success(mock_boto3: Any, tmp_path: Path) -> None:
    storage = S3Storage(bucket="my-bucket", expires_in=600)
    mock_client = mock_boto3.client.return_value
    mock_client.generate_presigned_url.return_value = "https://s3/url"

    document = tmp_path / "widget_1.html"
    document.write_text("<html></html>")

    url = await storage.upload_file(document, "s1/widget_1.html")

    mock_client.upload_file.assert_called_with(
        str(document), "my-bucket", "rharness/s1/widget_1.html", ExtraArgs={"ContentType": "text/html"}
    )
    mock_client.generate_presigned_url.assert_called_with(
        ClientMethod="get_object",
        Params={"Bucket": "my-bucket", "Key": "rharness/s1/widget_1.html"},
        ExpiresIn=600,
    )
    assert url == "https://s3/url"


@pytest.mark.asyncio
async def test_s3_upload_without_prefix(mock_boto3: Any, tmp_path: Path) -> None:
    storage = S3Storage(bucket="my-bucket", prefix="")
    mock_client = mock_boto3.client.return_value

    document = tmp_path / "widget_2.html"
    document.write_text("<html></html>")

    await storage.upload_file(document, "s1/widget_2.html")

    assert mock_client.upload_file.call_args.args[2] == "s1/widget_2.html"


@pytest.mark.asyncio
async def test_s3_upload_file_not_found(mock_boto3: Any) -> None:
    storage = S3Storage(bucket="my-bucket")
    with pytest.raises(FileNotFoundError):
        await storage.upload_file(Path("nonexistent"), "key")


@pytest.mark.asyncio
async def test_s3_upload_client_error(mock_boto3: Any, tmp_path: Path) -> None:
    storage = S3Storage(bucket="my-bucket")
    mock_client = mock_boto3.client.return_value
    mock_client.upload_file.side_effect = ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "PutObject")

    document = tmp_path / "widget.html"
    document.write_text("<html></html>")

    with pytest.raises(ClientError):
        await storage.upload_file(document, "key")
