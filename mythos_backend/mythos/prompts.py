SYSTEM_PROMPT_TEMPLATE = """You are a professional story designer. Create a high-quality {page_count}-page story.
Genre: {genre}, Mood: {mood}, Visual Theme: {style}, Cast: {cast}.
Plot Hook: {plot}

Every page MUST have a matching "imagePrompt".
The "imagePrompt" MUST be a literal, visual description of exactly what is happening in that page's text.
Include specific details about characters' appearance (hair color, clothing) in every "imagePrompt" to maintain visual consistency.
Do not use abstract concepts in "imagePrompt"; use physical descriptions.

Schema:
{schema}

Return ONLY valid JSON for the schema above, with exactly {page_count} objects in "pages"."""


STORY_SCHEMA = r"""{
  "title": "<a creative title>",
  "pages": [
    {
      "text": "<the page text, Markdown allowed>",
      "imagePrompt": "<literal visual scene description>"
    }
  ]
}"""


USER_PROMPT = "Manifest the chronicle."

DEFAULT_PLOT = "Create a unique, compelling original narrative."

DEFAULT_CAST = "an original cast of your choosing"


IMAGE_PROMPT_TEMPLATE = (
    "A professional storybook illustration. Style: {genre}. Scene: {prompt}. "
    "High quality, cinematic lighting, perfectly relevant to the story, 4k resolution."
)
