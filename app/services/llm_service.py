import asyncio
import aiohttp
import json
import logging
import time
from typing import Dict, Any, Optional, List
from datetime import datetime
from app.config.llm_settings import llm_settings
from app.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

class LLMService:
    """Cliente do Ollama (/api/chat). Nunca levanta erro para o chamador: devolve None."""

    def __init__(self, metrics: Optional[MetricsService] = None):
        self.ollama_url = llm_settings.ollama_base_url
        self.model = llm_settings.ollama_model
        self.temperature = llm_settings.temperature
        self.max_tokens = llm_settings.max_tokens
        self.timeout = llm_settings.timeout
        self.metrics = metrics
        self.session: Optional[aiohttp.ClientSession] = None
        self.is_initialized = False
        self.connection_error: Optional[str] = None
        self.last_test_time: Optional[datetime] = None

    async def initialize(self):
        try:
            logger.info(f"🔧 Initializing LLM Service ({self.ollama_url}, model {self.model})")

            timeout_config = aiohttp.ClientTimeout(total=self.timeout)
            self.session = aiohttp.ClientSession(timeout=timeout_config)

            self.is_initialized = await self._test_ollama_connection()

            if self.is_initialized:
                logger.info(f"✅ LLM Service ready, model {self.model}")
            else:
                logger.warning("⚠️ LLM Service in fallback mode (Ollama unavailable)")

        except Exception as e:
            logger.error(f"❌ Failed to initialize LLM Service: {e}")
            self.is_initialized = False
            self.connection_error = str(e)

    async def _test_ollama_connection(self) -> bool:
        try:
            async with self.session.get(f"{self.ollama_url}/api/tags") as response:
                if response.status != 200:
                    self.connection_error = f"Ollama returned status {response.status}"
                    logger.error(f"❌ {self.connection_error}")
                    return False

                tags_data = await response.json()
                model_names = [m.get('name', '') for m in tags_data.get('models', [])]
                logger.info(f"📋 Ollama models: {model_names}")

                if self.model not in model_names:
                    if not model_names:
                        self.connection_error = "No models available in Ollama"
                        logger.error(f"❌ {self.connection_error}")
                        return False
                    # Usa o primeiro modelo disponível
                    logger.warning(f"⚠️ Model {self.model} not found, using {model_names[0]}")
                    self.model = model_names[0]

                self.last_test_time = datetime.now()
                self.connection_error = None
                return True

        except aiohttp.ClientError as e:
            self.connection_error = f"Connection error: {e}"
        except asyncio.TimeoutError:
            self.connection_error = "Timeout connecting to Ollama"

        logger.error(f"❌ {self.connection_error}")
        return False

    async def generate_response(
        self,
        prompt: str,
        system_message: str = None,
        history: List[Dict[str, str]] = None,
        temperature: float = None,
        max_tokens: int = None
    ) -> Optional[str]:
        if not self.is_initialized or not self.session:
            logger.debug("LLM not initialized, skipping generation")
            return None

        messages = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.extend(history or [])
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": temperature if temperature is not None else self.temperature,
                "num_predict": max_tokens or self.max_tokens
            }
        }

        start_time = time.monotonic()
        content = None

        try:
            async with self.session.post(f"{self.ollama_url}/api/chat", json=payload) as response:
                response_text = await response.text()

                if response.status != 200:
                    logger.error(f"❌ Ollama error (status {response.status}): {response_text[:200]}")
                else:
                    result = json.loads(response_text)
                    if "error" in result:
                        logger.error(f"❌ Ollama error: {result['error']}")
                    else:
                        content = (result.get("message", {}).get("content") or "").strip() or None
                        if not content:
                            logger.error("❌ Empty response from Ollama")

        except json.JSONDecodeError:
            logger.error("❌ Invalid JSON response from Ollama")
        except aiohttp.ClientError as e:
            logger.error(f"❌ Network error: {type(e).__name__}: {e}")
        except asyncio.TimeoutError:
            logger.error(f"❌ Timeout after {self.timeout}s")

        elapsed = time.monotonic() - start_time
        if self.metrics:
            self.metrics.record_llm_request(elapsed, success=content is not None)

        if content:
            logger.info(f"✅ LLM response generated in {elapsed:.2f}s")
        return content

    async def cleanup(self):
        if self.session:
            await self.session.close()
            self.session = None
        self.is_initialized = False
        logger.info("✅ LLM Service cleaned up")

    def get_service_status(self) -> Dict[str, Any]:
        return {
            "status": "online" if self.is_initialized else "offline",
            "ollama_url": self.ollama_url,
            "model": self.model,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
            "connection_error": self.connection_error,
            "last_test": self.last_test_time.isoformat() if self.last_test_time else None
        }
