"""Built-in plugins shipped with toolstream."""

from __future__ import annotations

from toolstream.tools.registry import PluginSpec

ALIBABA_SEARCH_DOCUMENT = """\
openapi: 3.0.1
info:
  title: Alibaba Search API
  description: Search the internet using Alibaba Cloud Search Service
  version: 1.0.0
servers:
  - url: https://opensearch.data.aliyun.com
paths:
  /v1/search:
    post:
      operationId: searchWeb
      summary: Search the web using Alibaba Cloud Search
      requestBody:
        required: true
        content:
          application/json:
            schema:
              type: object
              required: [query]
              properties:
                query:
                  type: string
                  description: Search query text
                  minLength: 2
                  maxLength: 100
                industry:
                  type: string
                  enum: [finance, law, medical, internet, tax, news_province, news_center]
                  description: Industry-specific search context
                timeRange:
                  type: string
                  enum: [OneDay, OneWeek, OneMonth, OneYear, NoLimit]
                  default: NoLimit
                  description: Time range for search results
                page:
                  type: integer
                  minimum: 1
                  default: 1
                  description: Page number for pagination
                sessionId:
                  type: string
                  description: Session ID for multi-turn search
                  maxLength: 128
      responses:
        '200':
          description: Search results
          content:
            application/json:
              schema:
                type: object
                properties:
                  results:
                    type: array
                    items:
                      type: object
                      properties:
                        title:
                          type: string
                        url:
                          type: string
                        snippet:
                          type: string
                        source:
                          type: string
      security:
        - ApiKeyAuth: []
components:
  securitySchemes:
    ApiKeyAuth:
      type: apiKey
      in: header
      name: Authorization
"""


def alibaba_search(token: str = "") -> PluginSpec:
    """Web search through Alibaba Cloud, authenticated with a bearer key."""
    return PluginSpec(
        id="alibaba-search",
        title="Alibaba Search",
        version="1.0.0",
        builtin=True,
        content=ALIBABA_SEARCH_DOCUMENT,
        auth={
            "type": "bearer",
            "location": "header",
            "header_name": "Authorization",
            "token": token,
        },
    )


def builtin_plugins(alibaba_api_key: str = "") -> list[PluginSpec]:
    return [alibaba_search(alibaba_api_key)]
