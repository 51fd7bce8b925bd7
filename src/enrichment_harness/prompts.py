# prompts.py
# Prompt templates. Plain strings with str.format() placeholders.

MAIN_PROMPT = """\
You are doing web research on behalf of a user. You are trying to figure out this information:

<info>
{info}
</info>

You have access to the following tools:

- `search`: call a search tool and get back some results
- `fetch_and_summarize`: fetch a website and get relevant notes about the given request.
- `submit`: call this when you are done and have gathered all the relevant info

Here is the information you have about the topic you are researching:

Topic: {topic}\
"""

INFO_PROMPT = """\
You are doing web research on behalf of a user. You are trying to find out this information:

<info>
{info}
</info>

You just scraped the following website: {url}

Based on the website content below, jot down some notes about the website.

<Website content>
{content}
</Website content>\
"""

CHECKER_PROMPT = """\
I am thinking of calling the submit tool with the info below. \
Is this good? Give your reasoning as well. \
You can encourage the Assistant to look at specific URLs if that seems relevant, or do more searches.
If you don't think it is good, you should be very specific about what could be improved.

{presumed_info}\
"""

ONE_ACTION_ONLY = "You must call one, and only one, tool!"

ONE_ACTION_REMINDER = (
    "You must call one, and only one, tool! "
    "You can call the `submit` tool to finish the task."
)

SUBMIT_DESCRIPTION = "Call this when you have gathered all the relevant info"
