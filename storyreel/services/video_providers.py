"""
Video Generation Providers
fal.ai and Amazon Bedrock (Nova Reel) text-to-video backends
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..config import Settings
from ..models.provider import ProviderRequest, ProviderModelConfig
from ..utils.exceptions import ProviderError
from ..utils.logger import get_logger
from .fal_queue import FalQueueClient
from .provider_registry import ProviderRegistry
from .storage import StorageGateway

logger = get_logger()


class VideoProvider(ABC):
    """One generation backend"""

    name: str = "provider"

    @abstractmethod
    async def generate_clip(
        self,
        model: ProviderModelConfig,
        request: ProviderRequest,
        output_path: str
    ) -> str:
        """Generate a clip for request.prompt and write it to output_path"""


class FalVideoProvider(VideoProvider):
    """Text-to-video through the fal.ai queue"""

    name = "fal"

    def __init__(self, fal: FalQueueClient):
        self.fal = fal

    async def generate_clip(self, model, request, output_path):
        payload = {"prompt": request.prompt, **request.config}
        logger.info(f"[{request.job_id}] scene {request.scene_number}: requesting {model.id}")

        result = await self.fal.run(model.endpoint, payload)

        video_url = (result.get("video") or {}).get("url")
        if not video_url:
            raise ProviderError("fal.ai", f"{model.id} returned no video url", result=result)

        return await self.fal.download(video_url, output_path)


class BedrockVideoProvider(VideoProvider):
    """Amazon Nova Reel through Bedrock async invocation, output lands in S3"""

    name = "amazon"

    def __init__(self, settings: Settings, storage: StorageGateway, client=None):
        self.settings = settings
        self.storage = storage
        self.bucket = settings.s3_bucket_name
        self.poll_interval = settings.provider_poll_interval
        self.poll_timeout = settings.provider_poll_timeout
        self._client = client

    @property
    def client(self):
        """Lazy initialize bedrock-runtime client"""
        if self._client is None:
            import boto3
            from botocore.config import Config

            self._client = boto3.client(
                "bedrock-runtime",
                aws_access_key_id=self.settings.aws_access_key_id or None,
                aws_secret_access_key=self.settings.aws_secret_access_key or None,
                region_name=self.settings.aws_region,
                config=Config(retries={"max_attempts": 3, "mode": "adaptive"})
            )
            logger.info("Bedrock runtime client initialized")
        return self._client

    def output_prefix(self, request: ProviderRequest) -> str:
        """S3 prefix unique to the user, video, job, attempt and scene"""
        return (
            f"users/{request.user_id}/videos/{request.video_id}/generations/"
            f"{request.job_id}/attempt-{request.attempt}/scene-{request.scene_number}/"
        )

    async def generate_clip(self, model, request, output_path):
        prefix = self.output_prefix(request)
        model_input = {
            "taskType": "TEXT_VIDEO",
            "textToVideoParams": {"text": request.prompt},
            "videoGenerationConfig": {
                "durationSeconds": int(request.config.get("duration", 6)),
                "fps": 24,
                "dimension": model.capabilities.resolutions[0],
                "seed": int(request.config.get("seed", 0)),
            },
        }

        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: self.client.start_async_invoke(
                    modelId=model.endpoint,
                    modelInput=model_input,
                    outputDataConfig={"s3OutputDataConfig": {"s3Uri": f"s3://{self.bucket}/{prefix}"}},
                )
            )
        except Exception as e:
            raise ProviderError("bedrock", f"start_async_invoke failed: {e}") from e

        arn = response["invocationArn"]
        logger.info(f"[{request.job_id}] scene {request.scene_number}: Nova Reel invocation {arn}")

        await self._wait_for_completion(arn)

        key = await self.storage.find_by_extension(self.bucket, prefix, ".mp4")
        if key is None:
            raise ProviderError("bedrock", f"no video found under s3://{self.bucket}/{prefix}", invocation_arn=arn)

        return await self.storage.download(self.bucket, key, output_path)

    async def _wait_for_completion(self, arn: str) -> None:
        loop = asyncio.get_event_loop()
        deadline = loop.time() + self.poll_timeout

        while True:
            try:
                job = await loop.run_in_executor(
                    None,
                    lambda: self.client.get_async_invoke(invocationArn=arn)
                )
            except Exception as e:
                raise ProviderError("bedrock", f"get_async_invoke failed: {e}", invocation_arn=arn) from e

            status = job.get("status")
            if status == "Completed":
                return
            if status == "Failed":
                raise ProviderError(
                    "bedrock",
                    f"generation failed: {job.get('failureMessage', 'unknown error')}",
                    invocation_arn=arn
                )
            if loop.time() >= deadline:
                raise ProviderError("bedrock", f"invocation timed out after {self.poll_timeout:.0f}s", invocation_arn=arn)

            await asyncio.sleep(self.poll_interval)


class ProviderDispatcher:
    """Routes a request to the backend serving its registered model"""

    def __init__(self, registry: ProviderRegistry, providers: Dict[str, VideoProvider]):
        self.registry = registry
        self.providers = providers

    def backend_for(self, model: ProviderModelConfig) -> VideoProvider:
        provider: Optional[VideoProvider] = self.providers.get(model.provider)
        if provider is None:
            raise ProviderError(model.provider, f"no backend configured for model {model.id}")
        return provider

    async def generate_clip(self, request: ProviderRequest, output_path: str) -> str:
        model = self.registry.get_model(request.provider_model_id)
        return await self.backend_for(model).generate_clip(model, request, output_path)
