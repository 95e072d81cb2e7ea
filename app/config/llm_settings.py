from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from dotenv import load_dotenv

load_dotenv()

class LLMSettings(BaseSettings):
    # Ollama
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"

    # Respostas curtas: WhatsApp com limite de SMS
    temperature: float = 0.7
    max_tokens: int = 50
    timeout: int = 10
    max_response_length: int = 160
    history_window: int = 6

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
        env_prefix=""
    )

llm_settings = LLMSettings()
