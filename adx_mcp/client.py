"""Interactive question-answering client for the ADX MCP server.

Connects to a running server over streamable HTTP, hands its tools to a
LangGraph ReAct agent, and answers natural-language questions in a loop.
"""

import asyncio
import os

from dotenv import load_dotenv
from langchain_core.messages import HumanMessage
from langchain_mcp_adapters.tools import load_mcp_tools
from langchain_openai import ChatOpenAI
from langgraph.prebuilt import create_react_agent
from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from adx_mcp.prompts import render_system_prompt

EXIT_COMMANDS = {"quit", "exit", "q"}


def server_url() -> str:
    mcp_host = os.environ.get("MCP_HOST", "127.0.0.1")
    mcp_port = os.environ.get("MCP_PORT", "8765")
    return f"http://{mcp_host}:{mcp_port}/mcp"


def known_tables() -> list[str]:
    """Tables listed in ADX_AGENT_TABLES (comma separated), if any."""
    raw = os.environ.get("ADX_AGENT_TABLES", "")
    return [t.strip() for t in raw.split(",") if t.strip()]


def make_llm() -> ChatOpenAI:
    return ChatOpenAI(
        model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
        max_tokens=2000,
        temperature=0,
    )


async def ask_question(question: str, llm=None) -> str:
    """Ask a natural language question and get ADX results"""
    async with streamablehttp_client(server_url()) as (read, write, get_session_id):
        async with ClientSession(read_stream=read, write_stream=write) as session:
            await session.initialize()
            tools = await load_mcp_tools(session)
            agent = create_react_agent(
                model=llm or make_llm(),
                tools=tools,
                prompt=render_system_prompt(known_tables()),
            )
            result = await agent.ainvoke({"messages": [HumanMessage(content=question)]})
            return result["messages"][-1].content


async def main():
    llm = make_llm()
    while True:
        question = input("> ").strip()
        if question.lower() in EXIT_COMMANDS:
            break
        if question:
            answer = await ask_question(question, llm)
            print(answer)


def run() -> None:
    load_dotenv()
    asyncio.run(main())


if __name__ == "__main__":
    run()
